"""
Backup cycle orchestration for the state sync sidecar.

One backup cycle makes the bucket reflect the current local state:

    1. Snapshot live SQLite databases into the staging directory
    2. Push the state dir to <prefix>/files/ (live databases excluded)
    3. Push the staging dir to <prefix>/sqlite/ (if it holds snapshots)
    4. Write <prefix>/backup-marker.json

Marker format:
    {"last_backup":"<YYYY-MM-DDTHH:MM:SSZ>","state_dir":"<path>"}

Invariants:
    - run() never raises for transport or snapshot failures; it reports them
    - A failed step stops the cycle; the marker is only written last
    - Databases whose snapshot failed keep their previous remote copy
    - files/ may update before a sqlite/ push fails; this window is accepted

How to change safely:
    - Keep the marker shape stable; dashboards and humans read it
    - Adding a two-phase marker changes what "last_backup" means
"""

from __future__ import annotations

import glob
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ..config import SidecarConfig
from ..errors import StateSyncError
from ..snapshot import SnapshotProducer, SnapshotReport
from ..store.base import ObjectStore
from ..sync import ExclusionPolicy, MirrorEngine, MirrorResult, SyncDirection

logger = logging.getLogger(__name__)

MARKER_NAME = "backup-marker.json"
MARKER_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass
class BackupResult:
    """Result of one backup cycle.

    Attributes:
        success: Whether every step completed
        snapshots: Snapshot batch report
        files: Push result for files/
        databases: Push result for sqlite/ (None when staging was empty)
        marker: Marker payload that was written
        duration_ms: Total cycle duration
        error: Error message if failed
    """

    success: bool
    snapshots: SnapshotReport = field(default_factory=SnapshotReport)
    files: MirrorResult | None = None
    databases: MirrorResult | None = None
    marker: dict[str, str] | None = None
    duration_ms: int = 0
    error: str | None = None

    @property
    def uploaded(self) -> int:
        """Data objects uploaded this cycle (marker not counted)."""
        return sum(r.uploaded for r in (self.files, self.databases) if r is not None)


def build_marker(state_dir: str, now: datetime) -> dict[str, str]:
    """Build the marker payload for a backup finished at now."""
    return {
        "last_backup": now.astimezone(timezone.utc).strftime(MARKER_TIME_FORMAT),
        "state_dir": state_dir,
    }


def encode_marker(marker: dict[str, str]) -> bytes:
    """Serialize the marker exactly as older sidecars wrote it."""
    return (json.dumps(marker, separators=(",", ":")) + "\n").encode("utf-8")


class BackupCycle:
    """Runs snapshot → mirror → marker as one reportable unit.

    Attributes:
        config: Sidecar configuration
        store: Connected object store
        engine: Mirror engine over the same store
        producer: SQLite snapshot producer
        cycles_run: Number of cycles executed (successful or not)

    Example:
        >>> cycle = BackupCycle(config, store)
        >>> result = await cycle.run()
        >>> if not result.success:
        ...     print(result.error)
    """

    def __init__(
        self,
        config: SidecarConfig,
        store: ObjectStore,
        engine: MirrorEngine | None = None,
        producer: SnapshotProducer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.engine = engine or MirrorEngine(store)
        self.producer = producer or SnapshotProducer(config.backup.sqlite_busy_timeout_seconds)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.cycles_run = 0

    def files_policy(self) -> ExclusionPolicy:
        """Backup exclusions, plus the staging dir if it lives under the state dir."""
        policy = ExclusionPolicy.for_backup()
        state_path = self.config.state.state_path.resolve()
        staging_path = self.config.state.staging_path.resolve()
        if staging_path.is_relative_to(state_path) and staging_path != state_path:
            relative = staging_path.relative_to(state_path).as_posix()
            policy = policy.with_patterns([f"{glob.escape(relative)}/*"])
        return policy

    async def run(self) -> BackupResult:
        """Execute one backup cycle.

        Returns:
            BackupResult; success is False if any step failed
        """
        start_time = time.time()
        self.cycles_run += 1
        state = self.config.state
        s3 = self.config.s3
        result = BackupResult(success=False)

        logger.info(f"Starting backup to {s3.bucket}/{s3.key()}...")

        try:
            result.snapshots = await self.producer.produce_snapshots(
                state.database_path,
                state.staging_path,
            )

            result.files = await self.engine.mirror(
                SyncDirection.PUSH,
                state.state_path,
                s3.key("files"),
                self.files_policy(),
                delete_orphans=True,
            )
            logger.info("Synced files.")

            if _has_files(state.staging_path):
                result.databases = await self.engine.mirror(
                    SyncDirection.PUSH,
                    state.staging_path,
                    s3.key("sqlite"),
                    ExclusionPolicy(tuple(glob.escape(name) for name in result.snapshots.failed)),
                    delete_orphans=True,
                )
                logger.info("Synced SQLite backups.")

            marker = build_marker(state.state_dir, self.clock())
            await self.store.put_object(
                s3.key(MARKER_NAME),
                encode_marker(marker),
                content_type="application/json",
            )
            result.marker = marker

        except (StateSyncError, OSError) as e:
            result.error = str(e)
            result.duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"Backup failed: {e}", extra={"duration_ms": result.duration_ms})
            return result

        result.success = True
        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Backup complete at {result.marker['last_backup']}.",
            extra={
                "uploaded": result.uploaded,
                "snapshots": result.snapshots.count,
                "duration_ms": result.duration_ms,
            },
        )
        return result


def _has_files(directory: Path) -> bool:
    return directory.is_dir() and any(p.is_file() for p in directory.iterdir())
