"""S3 blob backend for offloaded feature bodies."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cardboard.config import CardboardConfig
from cardboard.errors import StorageBackendError

logger = logging.getLogger(__name__)


class S3BlobStore:
    """S3-backed blob store rooted at ``s3://bucket/prefix``."""

    def __init__(self, *, bucket: str, prefix: str, config: CardboardConfig) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._config = config
        self._session = boto3.Session(region_name=config.region)
        self._s3 = self._session.client(
            "s3",
            region_name=config.region,
            endpoint_url=config.s3_endpoint_url,
            config=BotoConfig(
                connect_timeout=config.request_timeout_s,
                read_timeout=config.request_timeout_s,
                retries={"max_attempts": 5, "mode": "standard"},
            ),
        )

    def _k(self, key: str) -> str:
        key = key.lstrip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def _is_not_found(self, err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"NoSuchKey", "404", "NotFound"}
        return False

    def put_object(self, key: str, body: bytes) -> None:
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=self._k(key),
                Body=body,
                ContentType="application/geo+json",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageBackendError("put_object", f"s3://{self.bucket}/{self._k(key)}: {e}") from e

    def get_object(self, key: str) -> bytes:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=self._k(key))
            return resp["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StorageBackendError("get_object", f"s3://{self.bucket}/{self._k(key)}: {e}") from e

    def delete_object(self, key: str) -> None:
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=self._k(key))
        except (ClientError, BotoCoreError) as e:
            if self._is_not_found(e):
                logger.debug("Blob %s already absent", key)
                return
            raise StorageBackendError(
                "delete_object", f"s3://{self.bucket}/{self._k(key)}: {e}"
            ) from e

    def storage_info(self) -> dict[str, Any]:
        return {
            "backend": "s3",
            "bucket": self.bucket,
            "prefix": self.prefix,
            "endpoint_url": self._config.s3_endpoint_url,
        }
