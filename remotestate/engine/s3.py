"""S3-backed state store."""

from typing import Any, Dict, List, Optional, Tuple

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import StateConflictError, StateNotFoundError, StorageUnavailableError
from ..models import StateDocument, StateVersion, normalize_path
from .store import StateStore


logger = structlog.get_logger()

_NOT_FOUND = ("NoSuchKey", "404", "NotFound")
_PRECONDITION = ("PreconditionFailed", "ConditionalRequestConflict", "412")


class S3StateStore(StateStore):
    """
    State store on an S3 bucket.

    Layout per path:
        <prefix><path>/current.json           current document
        <prefix><path>/versions/<n>.json      immutable history

    A write swaps current.json with If-Match on the ETag that was read, so
    exactly one writer wins each version. The history object is written
    after the swap. A history write that fails is backfilled from
    current.json by the next write, and until then read_version serves the
    head from current.json.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: Optional[str] = None,
        client: Any = None,
        retain_versions: Optional[int] = None,
    ):
        super().__init__(retain_versions)
        if not bucket:
            raise ValueError("S3 state store requires a bucket name")
        self.bucket = bucket
        self.prefix = prefix
        self.region = region
        self.client = client or boto3.Session(region_name=region).client("s3")

    def _current_key(self, path: str) -> str:
        return f"{self.prefix}{path}/current.json"

    def _versions_prefix(self, path: str) -> str:
        return f"{self.prefix}{path}/versions/"

    def _version_key(self, path: str, version: int) -> str:
        return f"{self._versions_prefix(path)}{version:012d}.json"

    def _get(self, path: str, key: str, version: Optional[int] = None) -> Tuple[StateDocument, str]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND:
                raise StateNotFoundError(path, version) from e
            raise StorageUnavailableError("s3", str(e)) from e
        except BotoCoreError as e:
            raise StorageUnavailableError("s3", str(e)) from e

        body = response["Body"].read()
        return StateDocument.model_validate_json(body), response.get("ETag", "")

    def read(self, path: str) -> StateDocument:
        path = normalize_path(path)
        document, _ = self._get(path, self._current_key(path))
        return document

    def read_version(self, path: str, version: int) -> StateDocument:
        path = normalize_path(path)
        try:
            document, _ = self._get(path, self._version_key(path, version), version)
        except StateNotFoundError:
            # The head's history object may not be written yet
            head, _ = self._get(path, self._current_key(path), version)
            if head.version != version:
                raise
            return head
        return document

    def write(
        self,
        path: str,
        document: StateDocument,
        expected_version: int,
        fencing_token: Optional[int] = None,
    ) -> int:
        path = normalize_path(path)

        try:
            head, etag = self._get(path, self._current_key(path))
        except StateNotFoundError:
            head, etag = None, None

        stored = self._prepare(path, head, document, expected_version, fencing_token)

        if head is not None:
            # The head must be in history before it stops being current
            self._ensure_history(path, head)

        # Swapping current.json is the compare-and-set; nothing else is
        # written until it succeeds, so a failed swap leaves no trace
        condition: Dict[str, str] = {"IfMatch": etag} if etag else {"IfNoneMatch": "*"}
        self._put(path, self._current_key(path), stored, **condition)

        try:
            self._put(path, self._version_key(path, stored.version), stored)
        except StorageUnavailableError as e:
            # Backfilled by the next write
            logger.warning(
                "Failed to record state history",
                path=path,
                version=stored.version,
                error=e.message,
            )

        self._prune(path)

        logger.debug("State written", path=path, version=stored.version, backend="s3")
        return stored.version

    def _ensure_history(self, path: str, head: StateDocument) -> None:
        key = self._version_key(path, head.version)
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return
        except ClientError as e:
            if _error_code(e) not in _NOT_FOUND:
                raise StorageUnavailableError("s3", str(e)) from e
        except BotoCoreError as e:
            raise StorageUnavailableError("s3", str(e)) from e

        try:
            self._put(path, key, head, IfNoneMatch="*")
        except StateConflictError:
            # Another writer backfilled the same version
            return
        logger.info("Backfilled state history", path=path, version=head.version)

    def _put(self, path: str, key: str, document: StateDocument, **condition) -> None:
        metadata = {"version": str(document.version), "serial": str(document.serial)}
        if document.fencing_token is not None:
            metadata["fencing-token"] = str(document.fencing_token)

        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=document.model_dump_json().encode("utf-8"),
                ContentType="application/json",
                Metadata=metadata,
                **condition,
            )
        except ClientError as e:
            if _error_code(e) in _PRECONDITION:
                raise StateConflictError(path, f"concurrent write to {key}") from e
            raise StorageUnavailableError("s3", str(e)) from e
        except BotoCoreError as e:
            raise StorageUnavailableError("s3", str(e)) from e

    def _list_version_objects(self, path: str) -> List[Dict[str, Any]]:
        prefix = self._versions_prefix(path)
        objects = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                objects.extend(page.get("Contents", []))
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError("s3", str(e)) from e
        return objects

    @staticmethod
    def _parse_version(key: str) -> Optional[int]:
        name = key.rsplit("/", 1)[-1]
        if not name.endswith(".json"):
            return None
        stem = name[: -len(".json")]
        return int(stem) if stem.isdigit() else None

    def list_versions(self, path: str) -> List[StateVersion]:
        path = normalize_path(path)
        versions = []
        for obj in self._list_version_objects(path):
            version = self._parse_version(obj["Key"])
            if version is not None:
                versions.append(StateVersion(version=version, timestamp=obj["LastModified"]))
        return sorted(versions, key=lambda v: v.version)

    def _prune(self, path: str) -> None:
        if self.retain_versions is None:
            return

        keys = {}
        for obj in self._list_version_objects(path):
            version = self._parse_version(obj["Key"])
            if version is not None:
                keys[version] = obj["Key"]

        expired = self._expired_versions(list(keys))
        if not expired:
            return

        try:
            self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": keys[v]} for v in expired], "Quiet": True},
            )
        except (ClientError, BotoCoreError) as e:
            # The write already succeeded; pruning is retried on the next write
            logger.warning("Failed to prune state history", path=path, error=str(e))
            return

        logger.info("Pruned state history", path=path, removed=len(expired))

    def ensure_bucket(self, tags: Optional[Dict[str, str]] = None) -> None:
        """
        Ensure the state bucket exists with versioning, encryption and
        public access blocked.

        Raises:
            StorageUnavailableError: If the bucket can't be created or configured
        """
        try:
            self._create_bucket()
            self.client.put_bucket_versioning(
                Bucket=self.bucket,
                VersioningConfiguration={"Status": "Enabled"},
            )
            self.client.put_bucket_encryption(
                Bucket=self.bucket,
                ServerSideEncryptionConfiguration={
                    "Rules": [
                        {
                            "ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"},
                            "BucketKeyEnabled": True,
                        }
                    ]
                },
            )
            self.client.put_public_access_block(
                Bucket=self.bucket,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            )
            if tags:
                self.client.put_bucket_tagging(
                    Bucket=self.bucket,
                    Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in tags.items()]},
                )
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError("s3", f"bucket {self.bucket}: {e}") from e

    def _create_bucket(self) -> None:
        try:
            if self.region in (None, "us-east-1"):
                self.client.create_bucket(Bucket=self.bucket)
            else:
                self.client.create_bucket(
                    Bucket=self.bucket,
                    CreateBucketConfiguration={"LocationConstraint": self.region},
                )
            logger.info("Created S3 bucket", bucket=self.bucket)
        except ClientError as e:
            if _error_code(e) not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise
            logger.info("S3 bucket already exists", bucket=self.bucket)


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))

