"""S3-backed storage for uploaded image bytes."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from .aws import call_service, make_client
from .errors import NotFoundError

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000


class ObjectStore:
    """Put, fetch, delete and presign objects in a single bucket."""

    def __init__(self, bucket_name: str, client: Any = None, region: str = "us-east-1"):
        self.bucket_name = bucket_name
        self.client = client or make_client("s3", region)

    async def put_object(
        self,
        key: str,
        content: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        await call_service(
            "s3",
            self.client.put_object,
            Bucket=self.bucket_name,
            Key=key,
            Body=content,
            ContentType=content_type,
            Metadata=metadata or {},
        )
        logger.info(f"Stored object s3://{self.bucket_name}/{key} ({len(content)} bytes)")

    async def get_object(self, key: str) -> bytes:
        response = await call_service(
            "s3",
            self.client.get_object,
            Bucket=self.bucket_name,
            Key=key,
            error_map={
                "NoSuchKey": (NotFoundError, f"Object {key} not found"),
                "404": (NotFoundError, f"Object {key} not found"),
            },
        )
        body = response.get("Body")
        if body is None:
            raise NotFoundError(f"Object {key} has no content")
        return await call_service("s3", body.read)

    async def delete_object(self, key: str) -> None:
        await call_service("s3", self.client.delete_object, Bucket=self.bucket_name, Key=key)
        logger.info(f"Deleted object s3://{self.bucket_name}/{key}")

    async def delete_objects(self, keys: Sequence[str]) -> int:
        """Delete many objects, DELETE_BATCH_SIZE keys per request."""
        keys = [key for key in keys if key]
        for offset in range(0, len(keys), DELETE_BATCH_SIZE):
            chunk: List[Dict[str, str]] = [{"Key": key} for key in keys[offset:offset + DELETE_BATCH_SIZE]]
            await call_service(
                "s3",
                self.client.delete_objects,
                Bucket=self.bucket_name,
                Delete={"Objects": chunk, "Quiet": True},
            )
        if keys:
            logger.info(f"Deleted {len(keys)} object(s) from s3://{self.bucket_name}")
        return len(keys)

    async def presigned_get_url(self, key: str, expires_in: int = 3600) -> str:
        return await call_service(
            "s3",
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket_name, "Key": key},
            ExpiresIn=expires_in,
        )
