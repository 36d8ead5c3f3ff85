"""
Error types for the state sync sidecar.

Invariants:
    - Per-file and per-cycle failures are absorbed at their own layer
    - Only the gateway exiting or a termination signal end the process
    - Skipped restores are normal outcomes, not errors
"""

from __future__ import annotations


class StateSyncError(Exception):
    """Base exception for state sync operations."""
    pass


class ConfigMissingError(StateSyncError):
    """Required transport configuration is absent.

    Attributes:
        missing: Names of the missing environment variables
    """

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing env vars: {' '.join(self.missing)}")


class TransportError(StateSyncError):
    """The remote object store failed mid-operation."""
    pass


class SnapshotError(StateSyncError):
    """A single database could not be copied consistently.

    Attributes:
        name: File name of the database
    """

    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(f"{name}: {message}")


class RestoreIncompleteError(StateSyncError):
    """Restore started pulling state but could not finish."""
    pass
