"""
Restore module for the state sync sidecar.

Invariants:
    - Restore runs at most once per boot, before the gateway starts
    - Existing local state always wins over the bucket
"""

from .restorer import RestoreResult, Restorer, RestoreStatus, should_restore

__all__ = ["Restorer", "RestoreResult", "RestoreStatus", "should_restore"]
