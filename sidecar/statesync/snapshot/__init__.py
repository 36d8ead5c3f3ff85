"""
Snapshot module for the state sync sidecar.

This module produces consistent copies of the gateway's live SQLite
databases so they can be uploaded without risking a torn file.

Invariants:
    - Live database files are never uploaded directly
    - Only complete, consistent snapshots land in the staging directory
"""

from .snapshotter import SnapshotOutcome, SnapshotProducer, SnapshotReport

__all__ = ["SnapshotProducer", "SnapshotReport", "SnapshotOutcome"]
