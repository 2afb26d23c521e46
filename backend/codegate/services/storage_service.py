"""Object storage client for source archives and analyzer artifacts."""

import asyncio
import logging
from dataclasses import dataclass

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from codegate.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class StorageError(Exception):
    """Object storage request failed."""
    pass


@dataclass
class StoredObject:
    bucket: str
    key: str


class ObjectStorage:
    """Blob get/put against an S3-compatible endpoint (MinIO in development)."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.minio_endpoint,
                aws_access_key_id=settings.minio_access_key or None,
                aws_secret_access_key=settings.minio_secret_key or None,
                region_name=settings.minio_region,
                config=Config(s3={"addressing_style": "path"}),
            )
        return self._client

    async def get_object(self, bucket: str, key: str) -> bytes:
        def _get() -> bytes:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_get)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to get s3://{bucket}/{key}: {exc}") from exc

    async def put_object(
        self, bucket: str, key: str, data: bytes, content_type: str
    ) -> StoredObject:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to put s3://{bucket}/{key}: {exc}") from exc
        return StoredObject(bucket=bucket, key=key)
