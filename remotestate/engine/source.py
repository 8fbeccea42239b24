"""Load parsed desired graphs from files."""

from pathlib import Path
from typing import Union

import yaml

from ..models import DesiredGraph


def load_desired_graph(source: Union[str, Path]) -> DesiredGraph:
    """
    Load a desired graph from a JSON or YAML file.

    Expected shape:
        resources:
          - id: aws_instance.web
            attributes: {instance_type: t2.micro}
            depends_on: [aws_security_group.web]
        outputs:
          public_ip: aws_instance.web.public_ip

    Raises:
        ValueError: If the file is not a mapping
        pydantic.ValidationError: If the content does not match the schema
    """
    text = Path(source).read_text(encoding="utf-8")
    # YAML is a superset of JSON, so one loader covers both
    data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{source}: desired graph must be a mapping")

    return DesiredGraph.model_validate(data)
