"""S3 storage backend for the bootstrap state."""

from __future__ import annotations

from typing import Any

from loguru import logger

from cloudenv.exceptions import BackendError, NotFoundError
from cloudenv.providers.ec2.clients import backend_errors

log = logger.bind(component="s3")

_MISSING = ("NoSuchKey", "NoSuchBucket", "404", "NotFound")
_LOST_RACE = ("PreconditionFailed", "ConditionalRequestConflict")


class S3Storage:
    """StorageBackend over one S3 bucket."""

    def __init__(self, s3: Any, bucket: str, region: str, *, conditional: bool = False) -> None:
        self.s3 = s3
        self.bucket = bucket
        self.region = region
        self.supports_conditional_put = conditional

    def ensure_container(self) -> None:
        try:
            with backend_errors("HeadBucket"):
                self.s3.head_bucket(Bucket=self.bucket)
            return
        except BackendError as e:
            if e.code not in _MISSING:
                raise

        log.info("Creating control bucket {bucket}", bucket=self.bucket)
        kwargs: dict[str, Any] = {"Bucket": self.bucket}
        if self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        with backend_errors("CreateBucket"):
            self.s3.create_bucket(**kwargs)

    def get(self, key: str) -> bytes:
        try:
            with backend_errors("GetObject"):
                return self.s3.get_object(Bucket=self.bucket, Key=key)["Body"].read()
        except BackendError as e:
            if e.code in _MISSING:
                raise NotFoundError(key) from e
            raise

    def put(self, key: str, data: bytes) -> None:
        with backend_errors("PutObject"):
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data)

    def put_if_absent(self, key: str, data: bytes) -> bool:
        try:
            with backend_errors("PutObject"):
                self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, IfNoneMatch="*")
        except BackendError as e:
            if e.code in _LOST_RACE:
                return False
            raise
        return True

    def delete(self, key: str) -> None:
        with backend_errors("DeleteObject"):
            self.s3.delete_object(Bucket=self.bucket, Key=key)
