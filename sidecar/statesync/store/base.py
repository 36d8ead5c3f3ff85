"""
Base protocol and types for the object store abstraction.

This module defines the ObjectStore protocol that all transports must
implement, along with the RemoteObject listing type and store errors.

Invariants:
    - Keys are "/"-separated and never start with "/"
    - list_objects() returns every object under a prefix, not one page
    - last_modified is UTC epoch seconds, comparable with local st_mtime

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, runtime_checkable

from ..errors import TransportError


class StoreConnectionError(TransportError):
    """Connection to the object store failed or was never opened."""
    pass


class ObjectNotFoundError(TransportError):
    """The requested key does not exist."""
    pass


@dataclass(frozen=True)
class RemoteObject:
    """An object in the remote store.

    Attributes:
        key: Full object key including the prefix
        size: Object size in bytes
        last_modified: Last modification time (UTC epoch seconds)
        etag: Entity tag as reported by the store, without quotes
    """
    key: str
    size: int
    last_modified: float
    etag: str = ""

    def relative_to(self, prefix: str) -> str:
        """Key with the given prefix (and its separator) removed."""
        prefix = prefix.rstrip("/") + "/"
        if not self.key.startswith(prefix):
            raise ValueError(f"{self.key} is not under {prefix}")
        return self.key[len(prefix):]


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for remote object store transports.

    The sync engine only needs list/get/put/delete-by-key semantics;
    change detection uses the size, timestamp and etag reported by
    list_objects().

    Example:
        >>> store = S3ObjectStore(config.s3)
        >>> await store.connect()
        >>> await store.put_object("openclaw-state/backup-marker.json", b"{}")
        >>> [o.key for o in await store.list_objects("openclaw-state/")]
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection to the store.

        Raises:
            StoreConnectionError: If the store cannot be reached
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        ...

    @abstractmethod
    async def list_objects(self, prefix: str) -> list[RemoteObject]:
        """List every object whose key starts with prefix.

        Raises:
            TransportError: If listing fails
        """
        ...

    @abstractmethod
    async def any_objects(self, prefix: str) -> bool:
        """Whether at least one object exists under prefix."""
        ...

    @abstractmethod
    async def get_object(self, key: str) -> bytes:
        """Download an object.

        Raises:
            ObjectNotFoundError: If the key does not exist
            TransportError: For other failures
        """
        ...

    @abstractmethod
    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: Optional[str] = None,
    ) -> RemoteObject:
        """Upload an object, overwriting any existing one at key.

        Returns:
            RemoteObject describing what was stored
        """
        ...

    @abstractmethod
    async def delete_objects(self, keys: Iterable[str]) -> int:
        """Delete objects by key. Missing keys are ignored.

        Returns:
            Number of keys submitted for deletion
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the store."""
        ...
