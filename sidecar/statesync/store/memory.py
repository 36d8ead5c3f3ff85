"""
In-memory object store implementation for testing.

This module provides a simple in-memory transport for:
- Unit tests
- Integration tests of the supervisor
- Local development without a bucket

Invariants:
    - All data is lost on process exit
    - ETags are the MD5 hex digest of the body, like single-part S3 uploads
    - last_modified is the wall-clock time of the put

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the ObjectStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .base import ObjectNotFoundError, RemoteObject, StoreConnectionError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """Object body plus metadata."""
    body: bytes
    last_modified: float
    etag: str
    content_type: Optional[str] = None


class InMemoryObjectStore:
    """In-memory implementation of ObjectStore for testing.

    Attributes:
        put_count: Number of successful put_object calls
        get_count: Number of successful get_object calls
        delete_count: Number of keys deleted

    Example:
        >>> store = InMemoryObjectStore()
        >>> await store.connect()
        >>> await store.put_object("prefix/files/a.txt", b"hello")
        >>> store.keys("prefix/")
        ['prefix/files/a.txt']
    """

    def __init__(self) -> None:
        self._objects: Dict[str, StoredObject] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._failures: Dict[str, Exception] = {}
        self.put_count = 0
        self.get_count = 0
        self.delete_count = 0

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryObjectStore connected")

    async def close(self) -> None:
        """Disconnect. Stored objects are kept so a store can be reopened."""
        self._connected = False
        logger.debug("InMemoryObjectStore closed")

    def _check(self, operation: str) -> None:
        if not self._connected:
            raise StoreConnectionError("Not connected")
        failure = self._failures.pop(operation, None)
        if failure is not None:
            raise failure

    async def list_objects(self, prefix: str) -> list[RemoteObject]:
        """List objects under prefix, sorted by key."""
        self._check("list")
        async with self._lock:
            return [
                RemoteObject(
                    key=key,
                    size=len(obj.body),
                    last_modified=obj.last_modified,
                    etag=obj.etag,
                )
                for key, obj in sorted(self._objects.items())
                if key.startswith(prefix)
            ]

    async def any_objects(self, prefix: str) -> bool:
        """Whether any key starts with prefix."""
        self._check("list")
        return any(key.startswith(prefix) for key in self._objects)

    async def get_object(self, key: str) -> bytes:
        """Return the stored body."""
        self._check("get")
        async with self._lock:
            obj = self._objects.get(key)
            if obj is None:
                raise ObjectNotFoundError(f"Object not found: {key}")
            self.get_count += 1
            return obj.body

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: Optional[str] = None,
    ) -> RemoteObject:
        """Store body at key."""
        self._check("put")
        async with self._lock:
            obj = StoredObject(
                body=bytes(body),
                last_modified=time.time(),
                etag=hashlib.md5(body).hexdigest(),
                content_type=content_type,
            )
            self._objects[key] = obj
            self.put_count += 1

        return RemoteObject(key=key, size=len(body), last_modified=obj.last_modified, etag=obj.etag)

    async def delete_objects(self, keys: Iterable[str]) -> int:
        """Remove keys; unknown keys are ignored."""
        self._check("delete")
        keys = list(keys)
        async with self._lock:
            for key in keys:
                if self._objects.pop(key, None) is not None:
                    self.delete_count += 1
        return len(keys)

    # Testing helpers

    def keys(self, prefix: str = "") -> List[str]:
        """All keys under prefix, sorted (testing helper)."""
        return sorted(k for k in self._objects if k.startswith(prefix))

    def read(self, key: str) -> bytes:
        """Body stored at key without touching counters (testing helper)."""
        return self._objects[key].body

    def content_type(self, key: str) -> Optional[str]:
        """Content type stored at key (testing helper)."""
        return self._objects[key].content_type

    def seed(self, key: str, body: bytes, last_modified: Optional[float] = None) -> None:
        """Insert an object directly, bypassing counters (testing helper)."""
        self._objects[key] = StoredObject(
            body=body,
            last_modified=time.time() if last_modified is None else last_modified,
            etag=hashlib.md5(body).hexdigest(),
        )

    def inject_failure(self, exception: Exception, operation: str = "put") -> None:
        """Make the next call of one operation raise exception (testing helper).

        Args:
            exception: Exception to raise
            operation: One of "list", "get", "put", "delete"
        """
        self._failures[operation] = exception

    def reset_counters(self) -> None:
        """Zero the operation counters (testing helper)."""
        self.put_count = 0
        self.get_count = 0
        self.delete_count = 0
