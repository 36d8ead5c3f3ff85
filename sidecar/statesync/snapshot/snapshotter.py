"""
SQLite snapshotter for the state sync sidecar.

The gateway keeps its memory databases open for writes the whole time it
runs, so copying the files directly can capture a torn page or miss the
WAL contents. The snapshotter instead produces a point-in-time consistent
copy of each database with the SQLite online backup API, into a staging
directory that the sync engine uploads.

Staging layout:
    <staging_dir>/<original name>.sqlite

Invariants:
    - Snapshots are atomic (backup API into a temp file, then rename)
    - A failed snapshot never leaves a partial or stale copy in staging
    - One failing database does not abort the batch
    - Source databases are only read (shared lock held by the backup API)

How to change safely:
    - Keep staging names identical to source names; restore relies on it
    - Test with a database held open by a concurrent writer
"""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import SnapshotError

logger = logging.getLogger(__name__)

DATABASE_GLOB = "*.sqlite"
PARTIAL_SUFFIX = ".partial"


@dataclass
class SnapshotOutcome:
    """Result of snapshotting one database.

    Attributes:
        name: Database file name
        ok: Whether a consistent copy was written
        size_bytes: Size of the snapshot (0 on failure)
        error: Error message if failed
    """

    name: str
    ok: bool
    size_bytes: int = 0
    error: str | None = None


@dataclass
class SnapshotReport:
    """Per-file outcomes for one snapshot batch."""

    outcomes: list[SnapshotOutcome] = field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of databases snapshotted successfully."""
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> list[str]:
        """Names of databases that could not be snapshotted."""
        return [o.name for o in self.outcomes if not o.ok]


class SnapshotProducer:
    """Creates consistent copies of live SQLite databases.

    Attributes:
        busy_timeout_seconds: How long to wait on a locked source database

    Example:
        >>> producer = SnapshotProducer()
        >>> report = await producer.produce_snapshots(state / "memory", staging)
        >>> print(f"Backed up {report.count} SQLite database(s)")
    """

    def __init__(self, busy_timeout_seconds: float = 5.0) -> None:
        self.busy_timeout_seconds = busy_timeout_seconds

    async def produce_snapshots(self, source_dir: Path, staging_dir: Path) -> SnapshotReport:
        """Snapshot every database in source_dir into staging_dir.

        Runs in a worker thread so the event loop keeps serving signals and
        the gateway wait while pages are copied.

        Args:
            source_dir: Directory holding live *.sqlite files
            staging_dir: Directory receiving the snapshots

        Returns:
            SnapshotReport with one outcome per database found
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._produce,
            Path(source_dir),
            Path(staging_dir),
        )

    def _produce(self, source_dir: Path, staging_dir: Path) -> SnapshotReport:
        staging_dir.mkdir(parents=True, exist_ok=True)

        databases: list[Path] = []
        if source_dir.is_dir():
            databases = sorted(p for p in source_dir.glob(DATABASE_GLOB) if p.is_file())

        self._prune(staging_dir, {db.name for db in databases})

        report = SnapshotReport()
        for db_path in databases:
            dest = staging_dir / db_path.name
            try:
                size = self._snapshot_one(db_path, dest)
                report.outcomes.append(SnapshotOutcome(name=db_path.name, ok=True, size_bytes=size))
            except SnapshotError as e:
                logger.warning(
                    f"Failed to backup {db_path.name} (may be locked, will retry next cycle): {e}"
                )
                dest.unlink(missing_ok=True)
                report.outcomes.append(SnapshotOutcome(name=db_path.name, ok=False, error=str(e)))

        logger.info(
            f"Backed up {report.count} SQLite database(s)",
            extra={"source_dir": str(source_dir), "failed": report.failed},
        )
        return report

    def _snapshot_one(self, source_path: Path, dest_path: Path) -> int:
        """Copy one database with the backup API.

        Returns:
            Size of the snapshot in bytes

        Raises:
            SnapshotError: If the copy could not be completed
        """
        tmp_path = dest_path.with_name(dest_path.name + PARTIAL_SUFFIX)
        tmp_path.unlink(missing_ok=True)

        try:
            # mode=rw refuses to create the source if it vanished after listing
            source_conn = sqlite3.connect(
                f"{source_path.resolve().as_uri()}?mode=rw",
                uri=True,
                timeout=self.busy_timeout_seconds,
            )
            try:
                dest_conn = sqlite3.connect(str(tmp_path))
                try:
                    source_conn.backup(dest_conn)
                finally:
                    dest_conn.close()
            finally:
                source_conn.close()

            os.replace(tmp_path, dest_path)
            return dest_path.stat().st_size

        except (sqlite3.Error, OSError) as e:
            raise SnapshotError(source_path.name, str(e)) from e

        finally:
            tmp_path.unlink(missing_ok=True)

    def _prune(self, staging_dir: Path, keep: set[str]) -> None:
        """Remove staging entries with no live source database."""
        for entry in staging_dir.iterdir():
            if entry.is_file() and entry.name not in keep:
                logger.debug(f"Removing stale snapshot {entry.name}")
                entry.unlink(missing_ok=True)
