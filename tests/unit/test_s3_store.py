"""Unit tests for the S3 state store."""

import io
import itertools
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from remotestate.engine.s3 import S3StateStore
from remotestate.exceptions import StateConflictError, StateNotFoundError, StorageUnavailableError
from remotestate.models import StateDocument

from tests.helpers import make_record


def client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def s3_object(document: StateDocument, etag: str = '"etag-1"') -> dict:
    return {"Body": io.BytesIO(document.model_dump_json().encode()), "ETag": etag}


class FakeS3:
    """In-memory S3 client that honours If-Match and If-None-Match."""

    def __init__(self):
        self.objects = {}
        self.failures = {}
        self._etags = itertools.count(1)

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise client_error("NoSuchKey")
        body, etag = self.objects[Key]
        return {"Body": io.BytesIO(body), "ETag": etag}

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise client_error("404", "HeadObject")
        return {"ETag": self.objects[Key][1]}

    def put_object(self, Bucket, Key, Body, IfMatch=None, IfNoneMatch=None, **_):
        code = self.failures.pop(Key, None)
        if code:
            raise client_error(code, "PutObject")

        existing = self.objects.get(Key)
        if IfNoneMatch == "*" and existing is not None:
            raise client_error("PreconditionFailed", "PutObject")
        if IfMatch is not None and (existing is None or existing[1] != IfMatch):
            raise client_error("PreconditionFailed", "PutObject")

        self.objects[Key] = (Body, f'"{next(self._etags)}"')
        return {}

    def get_paginator(self, name):
        now = datetime.now(timezone.utc)
        paginator = MagicMock()
        paginator.paginate.side_effect = lambda Bucket, Prefix: [
            {"Contents": [{"Key": k, "LastModified": now} for k in sorted(self.objects) if k.startswith(Prefix)]}
        ]
        return paginator


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    return S3StateStore(bucket="tf-state", prefix="states/", client=client)


class TestS3StateStoreRead:
    """Test reading documents from S3."""

    def test_read_current(self, store, client):
        """Test that the current document is read from current.json."""
        stored = StateDocument(version=2, resources=[make_record("r1", size=1)])
        client.get_object.return_value = s3_object(stored)

        assert store.read("prod/app") == stored
        client.get_object.assert_called_once_with(
            Bucket="tf-state", Key="states/prod/app/current.json"
        )

    def test_read_version(self, store, client):
        """Test that historical versions live under versions/."""
        client.get_object.return_value = s3_object(StateDocument(version=3))

        store.read_version("prod/app", 3)

        client.get_object.assert_called_once_with(
            Bucket="tf-state", Key="states/prod/app/versions/000000000003.json"
        )

    def test_read_missing(self, store, client):
        """Test that a missing key is not found."""
        client.get_object.side_effect = client_error("NoSuchKey")

        with pytest.raises(StateNotFoundError):
            store.read("prod/app")

    def test_read_access_denied(self, store, client):
        """Test that other S3 errors surface as unavailable storage."""
        client.get_object.side_effect = client_error("AccessDenied")

        with pytest.raises(StorageUnavailableError) as exc_info:
            store.read("prod/app")

        assert exc_info.value.backend == "s3"

    def test_requires_bucket(self, client):
        """Test that a bucket name is required."""
        with pytest.raises(ValueError):
            S3StateStore(bucket="", client=client)


class TestS3StateStoreWrite:
    """Test conditional writes to S3."""

    def test_first_write(self, store, client):
        """Test that a new path creates current.json, then records history."""
        client.get_object.side_effect = client_error("NoSuchKey")

        version = store.write("prod/app", StateDocument(), 0, fencing_token=3)

        assert version == 1
        current_put, version_put = client.put_object.call_args_list
        assert current_put.kwargs["Key"] == "states/prod/app/current.json"
        assert current_put.kwargs["IfNoneMatch"] == "*"
        assert current_put.kwargs["Metadata"] == {
            "version": "1",
            "serial": "0",
            "fencing-token": "3",
        }
        body = StateDocument.model_validate_json(current_put.kwargs["Body"])
        assert body.version == 1
        assert body.fencing_token == 3
        assert version_put.kwargs["Key"] == "states/prod/app/versions/000000000001.json"
        assert version_put.kwargs["Body"] == current_put.kwargs["Body"]
        client.head_object.assert_not_called()

    def test_update_uses_etag(self, store, client):
        """Test that replacing current.json is conditional on the ETag read."""
        head = StateDocument(version=1)
        client.get_object.return_value = s3_object(head, etag='"abc"')

        version = store.write("prod/app", head, 1)

        assert version == 2
        current_put = next(
            c for c in client.put_object.call_args_list
            if c.kwargs["Key"] == "states/prod/app/current.json"
        )
        assert current_put.kwargs["IfMatch"] == '"abc"'
        assert "IfNoneMatch" not in current_put.kwargs

    def test_stale_version_rejected_before_put(self, store, client):
        """Test that a version mismatch is detected from the head read."""
        head = StateDocument(version=4)
        client.get_object.return_value = s3_object(head)

        with pytest.raises(StateConflictError):
            store.write("prod/app", head, 3)

        client.put_object.assert_not_called()

    def test_concurrent_swap_rejected(self, store, client):
        """Test that losing the race for current.json is a conflict with nothing written."""
        head = StateDocument(version=1)
        client.get_object.return_value = s3_object(head)
        client.put_object.side_effect = client_error("PreconditionFailed", "PutObject")

        with pytest.raises(StateConflictError):
            store.write("prod/app", head, 1)

        assert client.put_object.call_count == 1

    def test_put_failure_unavailable(self, store, client):
        """Test that non-precondition put errors surface as unavailable storage."""
        client.get_object.side_effect = client_error("NoSuchKey")
        client.put_object.side_effect = client_error("SlowDown", "PutObject")

        with pytest.raises(StorageUnavailableError):
            store.write("prod/app", StateDocument(), 0)

    def test_retention_prunes_old_versions(self, client):
        """Test that versions beyond the retention count are deleted."""
        store = S3StateStore(bucket="tf-state", prefix="", client=client, retain_versions=2)
        head = StateDocument(version=2)
        client.get_object.return_value = s3_object(head)
        client.get_paginator.return_value.paginate.return_value = [
            {
                "Contents": [
                    {"Key": f"prod/app/versions/{v:012d}.json"} for v in (1, 2, 3)
                ]
            }
        ]

        store.write("prod/app", head, 2)

        client.delete_objects.assert_called_once_with(
            Bucket="tf-state",
            Delete={"Objects": [{"Key": "prod/app/versions/000000000001.json"}], "Quiet": True},
        )

    def test_prune_failure_does_not_fail_write(self, client):
        """Test that a failed prune is left for the next write."""
        store = S3StateStore(bucket="tf-state", client=client, retain_versions=1)
        client.get_object.side_effect = client_error("NoSuchKey")
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": f"states/prod/app/versions/{v:012d}.json"} for v in (1, 2)]}
        ]
        client.delete_objects.side_effect = client_error("AccessDenied", "DeleteObjects")

        assert store.write("prod/app", StateDocument(), 0) == 1


class TestS3StateStoreRecovery:
    """Test that transient S3 failures leave the path writable."""

    @pytest.fixture
    def fake(self):
        return FakeS3()

    @pytest.fixture
    def store(self, fake):
        return S3StateStore(bucket="tf-state", prefix="", client=fake)

    def test_retry_after_failed_swap(self, store, fake):
        """Test that a write retried after a throttled current.json put succeeds."""
        store.write("env/a", StateDocument(resources=[make_record("r1")]), 0)
        fake.failures["env/a/current.json"] = "SlowDown"

        with pytest.raises(StorageUnavailableError):
            store.write("env/a", store.read("env/a"), 1)

        assert [v.version for v in store.list_versions("env/a")] == [1]

        assert store.write("env/a", store.read("env/a"), 1) == 2
        assert store.read("env/a").version == 2
        assert [v.version for v in store.list_versions("env/a")] == [1, 2]

    def test_failed_history_write_is_backfilled(self, store, fake):
        """Test that a missed history object is served from current and backfilled."""
        store.write("env/a", StateDocument(resources=[make_record("r1", size=1)]), 0)
        fake.failures["env/a/versions/000000000002.json"] = "InternalError"

        updated = store.read("env/a")
        updated.resources = [make_record("r1", size=2)]
        assert store.write("env/a", updated, 1) == 2

        assert store.read_version("env/a", 2).resources[0].attributes == {"size": 2}
        assert [v.version for v in store.list_versions("env/a")] == [1]

        updated = store.read("env/a")
        updated.resources = [make_record("r1", size=3)]
        store.write("env/a", updated, 2)

        assert [v.version for v in store.list_versions("env/a")] == [1, 2, 3]
        assert store.read_version("env/a", 2).resources[0].attributes == {"size": 2}

    def test_read_version_not_head(self, store):
        """Test that a version that is neither in history nor current is not found."""
        store.write("env/a", StateDocument(), 0)

        with pytest.raises(StateNotFoundError):
            store.read_version("env/a", 5)


class TestS3StateStoreHistory:
    """Test listing history."""

    def test_list_versions(self, store, client):
        """Test that version keys are parsed and sorted."""
        earlier = datetime(2024, 1, 1, tzinfo=timezone.utc)
        later = datetime(2024, 1, 2, tzinfo=timezone.utc)
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "states/prod/app/versions/000000000002.json", "LastModified": later}]},
            {
                "Contents": [
                    {"Key": "states/prod/app/versions/000000000001.json", "LastModified": earlier},
                    {"Key": "states/prod/app/versions/notes.txt", "LastModified": earlier},
                ]
            },
        ]

        versions = store.list_versions("prod/app")

        assert [v.version for v in versions] == [1, 2]
        assert versions[1].timestamp == later
        client.get_paginator.assert_called_once_with("list_objects_v2")
        client.get_paginator.return_value.paginate.assert_called_once_with(
            Bucket="tf-state", Prefix="states/prod/app/versions/"
        )

    def test_list_versions_empty(self, store, client):
        """Test that pages without contents yield no versions."""
        client.get_paginator.return_value.paginate.return_value = [{}]

        assert store.list_versions("prod/app") == []


class TestEnsureBucket:
    """Test bucket bootstrap."""

    def test_existing_bucket_is_configured(self, store, client):
        """Test that an already owned bucket still gets versioning and encryption."""
        client.create_bucket.side_effect = client_error("BucketAlreadyOwnedByYou", "CreateBucket")

        store.ensure_bucket(tags={"team": "platform"})

        client.put_bucket_versioning.assert_called_once()
        client.put_bucket_encryption.assert_called_once()
        client.put_public_access_block.assert_called_once()
        client.put_bucket_tagging.assert_called_once_with(
            Bucket="tf-state", Tagging={"TagSet": [{"Key": "team", "Value": "platform"}]}
        )

    def test_region_constraint(self, client):
        """Test that buckets outside us-east-1 get a location constraint."""
        store = S3StateStore(bucket="tf-state", region="eu-west-1", client=client)

        store.ensure_bucket()

        client.create_bucket.assert_called_once_with(
            Bucket="tf-state",
            CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )
        client.put_bucket_tagging.assert_not_called()

    def test_configuration_denied(self, store, client):
        """Test that a failed bucket setting surfaces as unavailable storage."""
        client.put_bucket_encryption.side_effect = client_error("AccessDenied", "PutBucketEncryption")

        with pytest.raises(StorageUnavailableError) as exc_info:
            store.ensure_bucket()

        assert exc_info.value.backend == "s3"
        assert "tf-state" in exc_info.value.message
        client.put_public_access_block.assert_not_called()
