"""
OpenClaw state sync - durability sidecar for the OpenClaw gateway.

This package keeps the gateway's local state directory synchronized with a
prefix inside an S3-compatible bucket, so state survives redeploys, volume
loss and migration to a new host.

Architecture:
    ┌────────────┐  restore (once, before launch)   ┌──────────────────────┐
    │ Supervisor │─────────────────────────────────▶│ Restorer             │
    │            │                                  │  files/  → state dir │
    │            │                                  │  sqlite/ → memory/   │
    │            │  spawn + wait                    └──────────────────────┘
    │            │──────────────▶ gateway (child process)
    │            │
    │            │  interval + final drain          ┌──────────────────────┐
    │            │─────────────────────────────────▶│ BackupCycle          │
    └────────────┘                                  │  1. SQLite snapshots │
                                                    │  2. push files/      │
                                                    │  3. push sqlite/     │
                                                    │  4. marker           │
                                                    └──────────┬───────────┘
                                                               ▼
                                                    ┌──────────────────────┐
                                                    │ S3 bucket / prefix   │
                                                    └──────────────────────┘

Invariants:
    - Live SQLite files are never uploaded directly, only their snapshots
    - Restore never runs when the sentinel config file already exists
    - Restore completes (or is skipped) before the gateway starts
    - A termination signal always gets one final backup cycle

How to change safely:
    - The remote layout (files/, sqlite/, backup-marker.json) is read by
      older sidecars on restore; keep it stable
    - Test shutdown ordering with a real child process
"""

from ._version import __version__

__all__ = ["__version__"]
