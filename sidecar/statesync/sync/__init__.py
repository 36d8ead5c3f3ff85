"""
Remote sync engine for the state sync sidecar.

Invariants:
    - Exclusions apply identically on push and pull
    - Pull is additive; only push deletes, and only remote orphans
"""

from .exclusion import BASE_PATTERNS, LIVE_DATABASE_PATTERNS, ExclusionPolicy
from .mirror import MirrorEngine, MirrorResult, SyncDirection

__all__ = [
    "ExclusionPolicy",
    "BASE_PATTERNS",
    "LIVE_DATABASE_PATTERNS",
    "MirrorEngine",
    "MirrorResult",
    "SyncDirection",
]
