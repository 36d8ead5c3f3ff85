"""
Object store transport abstraction for the state sync sidecar.

This module provides a pluggable remote store interface supporting:
- S3-compatible buckets via aiobotocore (production)
- In-memory (for testing)

Invariants:
    - The sync engine only depends on the ObjectStore protocol
    - Transport failures surface as TransportError subclasses

How to change safely:
    - New transports must implement the ObjectStore protocol
    - Keep change-detection metadata (size, last_modified, etag) populated
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    ObjectNotFoundError,
    ObjectStore,
    RemoteObject,
    StoreConnectionError,
)
from .memory import InMemoryObjectStore
from .s3 import S3ObjectStore

if TYPE_CHECKING:
    from ..config import SidecarConfig


def create_object_store(config: "SidecarConfig") -> ObjectStore:
    """Factory function to create the object store from configuration.

    Args:
        config: Sidecar configuration

    Returns:
        S3ObjectStore bound to the configured bucket

    Raises:
        ConfigMissingError: If transport settings are incomplete
    """
    config.validate_transport()
    return S3ObjectStore(config.s3)


__all__ = [
    "ObjectStore",
    "RemoteObject",
    "ObjectNotFoundError",
    "StoreConnectionError",
    "create_object_store",
    "S3ObjectStore",
    "InMemoryObjectStore",
]
