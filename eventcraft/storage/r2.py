"""Cloudflare R2 object store (S3-compatible API through boto3)."""

import asyncio
from functools import partial
from typing import Any

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from ..exceptions import StorageError


class R2ObjectStore:
    """R2 bucket access.

    boto3 is synchronous, so every call runs in the default executor.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        public_url: str | None = None,
        client: Any = None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.public_url = public_url.rstrip("/") if public_url else None
        self.client = client

    async def startup(self) -> None:
        """Create the S3 client for the R2 endpoint."""
        if self.client is not None:
            return

        import boto3

        self.client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name="auto",
            config=Config(signature_version="s3v4", retries={"max_attempts": 3}),
        )
        logger.info(f"R2 object store using bucket: {self.bucket}")

    async def shutdown(self) -> None:
        if self.client is not None and hasattr(self.client, "close"):
            self.client.close()
        self.client = None

    async def _call(self, operation: str, method: str, **kwargs: Any) -> Any:
        if self.client is None:
            raise StorageError("Object store not started")

        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, partial(getattr(self.client, method), **kwargs))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"R2 {operation} failed: {e}")
            raise StorageError(f"R2 {operation} failed: {e}") from e

    async def upload(
        self, key: str, data: bytes, content_type: str, metadata: dict[str, str] | None = None
    ) -> str:
        """Upload bytes and return the key."""
        await self._call(
            "upload",
            "put_object",
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            Metadata=metadata or {},
        )
        logger.debug(f"Uploaded {len(data)} bytes to {key}")
        return key

    async def download(self, key: str) -> bytes:
        response = await self._call("download", "get_object", Bucket=self.bucket, Key=key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    async def generate_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """Presigned GET URL, or the public URL when the bucket is served publicly."""
        if self.public_url:
            return f"{self.public_url}/{key}"
        return await self._call(
            "signing",
            "generate_presigned_url",
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    async def delete(self, key: str) -> None:
        await self._call("delete", "delete_object", Bucket=self.bucket, Key=key)
        logger.debug(f"Deleted {key}")

    async def test_connection(self) -> bool:
        """Check the bucket is reachable."""
        try:
            await self._call("connection test", "head_bucket", Bucket=self.bucket)
            return True
        except StorageError:
            return False


class MemoryObjectStore:
    """In-process object store used when R2 is not configured."""

    def __init__(self, base_url: str = "memory://"):
        self.base_url = base_url
        self.objects: dict[str, tuple[bytes, str, dict[str, str]]] = {}

    async def startup(self) -> None:
        logger.warning("R2 not configured, images are kept in memory only")

    async def shutdown(self) -> None:
        self.objects.clear()

    async def upload(
        self, key: str, data: bytes, content_type: str, metadata: dict[str, str] | None = None
    ) -> str:
        self.objects[key] = (data, content_type, metadata or {})
        return key

    async def download(self, key: str) -> bytes:
        if key not in self.objects:
            raise StorageError(f"Object {key} not found")
        return self.objects[key][0]

    async def generate_signed_url(self, key: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}{key}"

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)

    async def test_connection(self) -> bool:
        return True
