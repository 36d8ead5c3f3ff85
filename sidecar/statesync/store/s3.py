"""
S3-compatible object store implementation.

This module provides the production transport for the sync engine. It uses
aiobotocore for async operations against AWS S3 or any S3-compatible
endpoint (Railway Buckets, MinIO, R2).

Invariants:
    - Credentials come from S3Config only, never from the ambient AWS chain
    - All botocore failures surface as TransportError subclasses
    - Listing follows continuation tokens until the prefix is exhausted

How to change safely:
    - Test against MinIO before changing request shapes
    - Keep delete batches at or below the 1000-key API limit
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Optional

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from .base import ObjectNotFoundError, RemoteObject, StoreConnectionError
from ..errors import TransportError

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000


class S3ObjectStore:
    """S3 implementation of the ObjectStore protocol.

    Attributes:
        config: S3Config with bucket, credentials, endpoint and region

    Example:
        >>> store = S3ObjectStore(config.s3)
        >>> await store.connect()
        >>> objects = await store.list_objects("openclaw-state/files/")
        >>> await store.close()
    """

    def __init__(self, config: Any) -> None:
        """Initialize the S3 store.

        Args:
            config: S3Config instance
        """
        self.config = config
        self._session = None
        self._client = None
        self._client_ctx = None

    @property
    def is_connected(self) -> bool:
        """Whether a client is open."""
        return self._client is not None

    async def connect(self) -> None:
        """Create the S3 client.

        Raises:
            StoreConnectionError: If the client cannot be created
        """
        if self._client is not None:
            return

        self._session = get_session()

        client_kwargs: dict[str, Any] = {
            "region_name": self.config.region,
            "config": AioConfig(
                connect_timeout=10,
                read_timeout=60,
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        }
        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url
        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        try:
            self._client_ctx = self._session.create_client("s3", **client_kwargs)
            self._client = await self._client_ctx.__aenter__()
        except (BotoCoreError, ValueError) as e:
            self._client_ctx = None
            raise StoreConnectionError(f"Failed to create S3 client: {e}") from e

        logger.info(
            "Connected to object store",
            extra={
                "bucket": self.config.bucket,
                "endpoint": self.config.endpoint_url or "AWS",
                "region": self.config.region,
            },
        )

    async def close(self) -> None:
        """Close the S3 client."""
        if self._client is not None:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing S3 client: {e}")

        self._client = None
        self._client_ctx = None
        self._session = None

    def _require_client(self) -> Any:
        if self._client is None:
            raise StoreConnectionError("Not connected to object store")
        return self._client

    async def list_objects(self, prefix: str) -> list[RemoteObject]:
        """List all objects under prefix, following pagination."""
        client = self._require_client()
        objects: list[RemoteObject] = []

        try:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(
                        RemoteObject(
                            key=obj["Key"],
                            size=obj["Size"],
                            last_modified=obj["LastModified"].timestamp(),
                            etag=obj.get("ETag", "").strip('"'),
                        )
                    )
        except (BotoCoreError, ClientError) as e:
            raise self._translate(e, prefix) from e

        return objects

    async def any_objects(self, prefix: str) -> bool:
        """Probe for a single object under prefix."""
        client = self._require_client()
        try:
            response = await client.list_objects_v2(
                Bucket=self.config.bucket,
                Prefix=prefix,
                MaxKeys=1,
            )
        except (BotoCoreError, ClientError) as e:
            raise self._translate(e, prefix) from e
        return bool(response.get("Contents"))

    async def get_object(self, key: str) -> bytes:
        """Download an object's body."""
        client = self._require_client()
        try:
            response = await client.get_object(Bucket=self.config.bucket, Key=key)
            return await response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise self._translate(e, key) from e

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: Optional[str] = None,
    ) -> RemoteObject:
        """Upload an object."""
        client = self._require_client()
        kwargs: dict[str, Any] = {"Bucket": self.config.bucket, "Key": key, "Body": body}
        if content_type:
            kwargs["ContentType"] = content_type

        try:
            response = await client.put_object(**kwargs)
        except (BotoCoreError, ClientError) as e:
            raise self._translate(e, key) from e

        return RemoteObject(
            key=key,
            size=len(body),
            last_modified=time.time(),
            etag=response.get("ETag", "").strip('"'),
        )

    async def delete_objects(self, keys: Iterable[str]) -> int:
        """Delete keys in batches of DELETE_BATCH_SIZE."""
        client = self._require_client()
        keys = list(keys)

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = await client.delete_objects(
                    Bucket=self.config.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                raise self._translate(e, batch[0]) from e

            errors = response.get("Errors", [])
            if errors:
                first = errors[0]
                raise TransportError(
                    f"Failed to delete {len(errors)} object(s), first: "
                    f"{first.get('Key')} ({first.get('Code')})"
                )

        return len(keys)

    def _translate(self, error: Exception, key: str) -> TransportError:
        """Map a botocore exception to the transport error taxonomy."""
        if isinstance(error, EndpointConnectionError):
            return StoreConnectionError(f"Cannot reach S3 endpoint: {error}")
        if isinstance(error, ClientError):
            code = error.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404", "NotFound"):
                return ObjectNotFoundError(f"Object not found: {key}")
            if code == "NoSuchBucket":
                return StoreConnectionError(f"Bucket '{self.config.bucket}' not found")
            return TransportError(f"S3 error ({code}) on {key}: {error}")
        return TransportError(f"S3 request failed on {key}: {error}")
