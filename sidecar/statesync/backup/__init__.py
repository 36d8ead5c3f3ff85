"""
Backup module for the state sync sidecar.

This module handles pushing local state to the bucket:
- BackupCycle: one snapshot + mirror + marker pass
- BackupLoop: periodic scheduling with a final drain on shutdown
"""

from .cycle import MARKER_NAME, BackupCycle, BackupResult, build_marker, encode_marker
from .loop import BackupLoop

__all__ = [
    "BackupCycle",
    "BackupResult",
    "BackupLoop",
    "MARKER_NAME",
    "build_marker",
    "encode_marker",
]
