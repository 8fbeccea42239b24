"""DynamoDB lock backend."""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from ..exceptions import StorageUnavailableError
from ..models import LockEntry
from .lock import LockBackend


logger = structlog.get_logger()

_TOKEN_SUFFIX = "#token"


class DynamoDBLockBackend(LockBackend):
    """
    Lock entries in a DynamoDB table keyed by LockID.

    Each lock path has one entry item keyed by the path and one counter
    item keyed by "<path>#token" that issues fencing tokens.
    """

    name = "dynamodb"

    def __init__(self, table_name: str, region: Optional[str] = None, client: Any = None):
        self.table_name = table_name
        self.region = region
        self.client = client or boto3.Session(region_name=region).client("dynamodb")

    def _call(self, method: str, **kwargs) -> Dict[str, Any]:
        try:
            return getattr(self.client, method)(TableName=self.table_name, **kwargs)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise
            raise StorageUnavailableError("dynamodb", str(e)) from e
        except BotoCoreError as e:
            raise StorageUnavailableError("dynamodb", str(e)) from e

    def get(self, path: str) -> Optional[LockEntry]:
        response = self._call("get_item", Key={"LockID": {"S": path}}, ConsistentRead=True)
        item = response.get("Item")
        return _from_item(item) if item else None

    def compare_and_set(
        self, path: str, expected_token: Optional[int], entry: Optional[LockEntry]
    ) -> bool:
        if expected_token is None:
            condition = {"ConditionExpression": "attribute_not_exists(LockID)"}
        else:
            condition = {
                "ConditionExpression": "FencingToken = :expected",
                "ExpressionAttributeValues": {":expected": {"N": str(expected_token)}},
            }

        try:
            if entry is not None:
                self._call("put_item", Item=_to_item(entry), **condition)
            elif expected_token is not None:
                self._call("delete_item", Key={"LockID": {"S": path}}, **condition)
            else:
                return self.get(path) is None
        except ClientError:
            return False

        return True

    def next_token(self, path: str) -> int:
        response = self._call(
            "update_item",
            Key={"LockID": {"S": f"{path}{_TOKEN_SUFFIX}"}},
            UpdateExpression="ADD #counter :one",
            ExpressionAttributeNames={"#counter": "Counter"},
            ExpressionAttributeValues={":one": {"N": "1"}},
            ReturnValues="UPDATED_NEW",
        )
        return int(response["Attributes"]["Counter"]["N"])

    def entries(self) -> Iterable[LockEntry]:
        try:
            paginator = self.client.get_paginator("scan")
            pages = paginator.paginate(TableName=self.table_name, ConsistentRead=True)
            for page in pages:
                for item in page.get("Items", []):
                    if not item["LockID"]["S"].endswith(_TOKEN_SUFFIX):
                        yield _from_item(item)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError("dynamodb", str(e)) from e

    def ensure_table(self, tags: Optional[Dict[str, str]] = None) -> None:
        """
        Create the lock table if it doesn't exist and wait for it.

        Raises:
            StorageUnavailableError: If the table can't be created
        """
        try:
            self.client.create_table(
                TableName=self.table_name,
                KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
                AttributeDefinitions=[{"AttributeName": "LockID", "AttributeType": "S"}],
                BillingMode="PAY_PER_REQUEST",
                Tags=[{"Key": k, "Value": v} for k, v in (tags or {}).items()],
            )

            waiter = self.client.get_waiter("table_exists")
            waiter.wait(TableName=self.table_name, WaiterConfig={"Delay": 2, "MaxAttempts": 30})

            logger.info("Created DynamoDB table", table=self.table_name)

        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise StorageUnavailableError("dynamodb", f"table {self.table_name}: {e}") from e
            logger.info("DynamoDB table already exists", table=self.table_name)
        except (BotoCoreError, WaiterError) as e:
            raise StorageUnavailableError("dynamodb", f"table {self.table_name}: {e}") from e


def _to_item(entry: LockEntry) -> Dict[str, Dict[str, str]]:
    return {
        "LockID": {"S": entry.path},
        "Holder": {"S": entry.holder},
        "AcquiredAt": {"S": entry.acquired_at.isoformat()},
        "ExpiresAt": {"S": entry.expires_at.isoformat()},
        "FencingToken": {"N": str(entry.fencing_token)},
        # Epoch seconds for the table's TTL attribute
        "ExpiresEpoch": {"N": str(int(entry.expires_at.timestamp()))},
    }


def _from_item(item: Dict[str, Dict[str, str]]) -> LockEntry:
    return LockEntry(
        path=item["LockID"]["S"],
        holder=item["Holder"]["S"],
        acquired_at=datetime.fromisoformat(item["AcquiredAt"]["S"]),
        expires_at=datetime.fromisoformat(item["ExpiresAt"]["S"]),
        fencing_token=int(item["FencingToken"]["N"]),
    )
