"""Unit tests for dependency ordering and diffing."""

import pytest

from remotestate.engine import compute_diff, resolve_outputs, topological_order, validate_graph
from remotestate.exceptions import (
    CycleDetectedError,
    DuplicateResourceError,
    GraphError,
    UnknownDependencyError,
)
from remotestate.models import Action, StateDocument

from tests.helpers import make_graph, make_record


def ids(records):
    return [record.id for record in records]


class TestTopologicalOrder:
    """Test dependency ordering."""

    def test_dependencies_come_first(self):
        """Test that a record follows every record it depends on."""
        resources = [
            make_record("app", depends_on=["db", "network"]),
            make_record("db", depends_on=["network"]),
            make_record("network"),
        ]

        assert ids(topological_order(resources)) == ["network", "db", "app"]

    def test_ties_keep_input_order(self):
        """Test that independent records keep their declared order."""
        resources = [make_record("c"), make_record("a"), make_record("b")]

        assert ids(topological_order(resources)) == ["c", "a", "b"]

    def test_ready_records_follow_input_position(self):
        """Test that the earliest declared ready record is picked next."""
        resources = [
            make_record("r3", depends_on=["r1"]),
            make_record("r2"),
            make_record("r1"),
        ]

        assert ids(topological_order(resources)) == ["r2", "r1", "r3"]

    def test_cycle_detected(self):
        """Test that a cycle is reported with its members."""
        resources = [
            make_record("a", depends_on=["c"]),
            make_record("b", depends_on=["a"]),
            make_record("c", depends_on=["b"]),
            make_record("d"),
        ]

        with pytest.raises(CycleDetectedError) as exc_info:
            topological_order(resources)

        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}
        assert "->" in exc_info.value.message

    def test_self_dependency_is_a_cycle(self):
        """Test that a record depending on itself is rejected."""
        with pytest.raises(CycleDetectedError) as exc_info:
            topological_order([make_record("a", depends_on=["a"])])

        assert exc_info.value.cycle == ["a", "a"]

    def test_unknown_dependency_strict(self):
        """Test that dependencies on undeclared ids are rejected."""
        with pytest.raises(UnknownDependencyError) as exc_info:
            topological_order([make_record("app", depends_on=["db"])])

        assert exc_info.value.resource_id == "app"
        assert exc_info.value.dependency == "db"

    def test_unknown_dependency_lenient(self):
        """Test that non-strict ordering ignores outside dependencies."""
        resources = [make_record("app", depends_on=["db"]), make_record("cache")]

        assert ids(topological_order(resources, strict=False)) == ["app", "cache"]


class TestValidateGraph:
    """Test desired graph validation."""

    def test_duplicate_ids(self):
        """Test that an id may only be declared once."""
        with pytest.raises(DuplicateResourceError):
            validate_graph([make_record("r1"), make_record("r1", a=1)])

    def test_graph_errors_are_value_errors(self):
        """Test that all graph errors share a base."""
        with pytest.raises(GraphError):
            validate_graph([make_record("a", depends_on=["b"]), make_record("b", depends_on=["a"])])

    def test_empty_graph(self):
        """Test that an empty graph is valid."""
        assert validate_graph([]) == []


class TestComputeDiff:
    """Test diff computation."""

    def test_new_path_creates_everything_in_order(self):
        """Test that an empty document yields creates in dependency order."""
        desired = make_graph(make_record("r2", depends_on=["r1"]), make_record("r1"))

        operations = compute_diff(StateDocument(), desired)

        assert [str(op) for op in operations] == ["create(r1)", "create(r2)"]

    def test_unchanged_resources_yield_nothing(self):
        """Test that matching attributes produce no operations."""
        current = StateDocument(resources=[make_record("r1", size=1)])

        assert compute_diff(current, make_graph(make_record("r1", size=1))) == []

    def test_computed_attributes_are_not_drift(self):
        """Test that provisioner-recorded attributes are ignored."""
        current = StateDocument(
            resources=[make_record("aws_instance.web", ami="ami-1", public_ip="1.2.3.4")]
        )

        assert compute_diff(current, make_graph(make_record("aws_instance.web", ami="ami-1"))) == []

    def test_changed_attribute_is_update(self):
        """Test that a changed attribute produces an update with the previous record."""
        current = StateDocument(resources=[make_record("r1", size=1)])

        operations = compute_diff(current, make_graph(make_record("r1", size=2)))

        assert len(operations) == 1
        assert operations[0].action == Action.UPDATE
        assert operations[0].record.attributes == {"size": 2}
        assert operations[0].previous.attributes == {"size": 1}

    def test_removed_resources_deleted_in_reverse_order(self):
        """Test that dependents are deleted before their dependencies."""
        current = StateDocument(
            resources=[
                make_record("r1"),
                make_record("r2", depends_on=["r1"]),
                make_record("r3", depends_on=["r2"]),
            ]
        )

        operations = compute_diff(current, make_graph())

        assert [str(op) for op in operations] == ["delete(r3)", "delete(r2)", "delete(r1)"]
        assert all(op.previous is op.record for op in operations)

    def test_creates_and_updates_before_deletes(self):
        """Test the overall ordering of a mixed diff."""
        current = StateDocument(resources=[make_record("old"), make_record("r1", size=1)])
        desired = make_graph(make_record("r1", size=2), make_record("new"))

        operations = compute_diff(current, desired)

        assert [str(op) for op in operations] == ["update(r1)", "create(new)", "delete(old)"]

    def test_invalid_desired_graph_rejected(self):
        """Test that diffing validates the desired graph."""
        with pytest.raises(UnknownDependencyError):
            compute_diff(StateDocument(), make_graph(make_record("r1", depends_on=["missing"])))


class TestResolveOutputs:
    """Test output reference resolution."""

    def test_dotted_resource_ids(self):
        """Test references to ids that themselves contain dots."""
        resources = [
            make_record("aws_instance.web", public_ip="54.1.2.3"),
            make_record("aws_db_instance.mysql", address="db.internal", port=3306),
        ]
        outputs = {
            "public_ip": "aws_instance.web.public_ip",
            "db_port": "aws_db_instance.mysql.port",
        }

        assert resolve_outputs(outputs, resources) == {"public_ip": "54.1.2.3", "db_port": 3306}

    def test_longest_id_wins(self):
        """Test that an id that is a prefix of another doesn't shadow it."""
        resources = [
            make_record("module", web={"name": "short"}),
            make_record("module.web", name="long"),
        ]

        assert resolve_outputs({"name": "module.web.name"}, resources) == {"name": "long"}

    def test_nested_and_list_values(self):
        """Test walking into mappings and lists."""
        resources = [
            make_record("lb", listeners=[{"port": 80}, {"port": 443}], tags={"env": "prod"}),
        ]
        outputs = {"https": "lb.listeners.1.port", "env": "lb.tags.env"}

        assert resolve_outputs(outputs, resources) == {"https": 443, "env": "prod"}

    def test_unresolvable_references(self):
        """Test that missing resources and attributes resolve to None."""
        resources = [make_record("lb", listeners=[{"port": 80}])]
        outputs = {
            "missing_resource": "db.address",
            "missing_attribute": "lb.dns_name",
            "out_of_range": "lb.listeners.5.port",
            "bare": "lb",
        }

        assert resolve_outputs(outputs, resources) == {
            "missing_resource": None,
            "missing_attribute": None,
            "out_of_range": None,
            "bare": None,
        }
