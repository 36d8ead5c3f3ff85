"""
Backup sync CLI for the state sync sidecar.

Runs one piece of the state lifecycle on its own, without supervising
the gateway. Useful for one-off restores, manual backups and for
deployments that run the backup loop as a separate process.

Usage:
    statesync restore   # Restore from bucket if local state is missing
    statesync backup    # One-shot backup
    statesync loop      # Periodic backup until SIGTERM/SIGINT (default)

Exit codes:
    0 - success, skipped restore, or backup disabled / not configured
    1 - restore incomplete, backup failed, or a malformed setting
    2 - usage error

Invariants:
    - A missing bucket configuration is never an error
    - loop mode always runs one final backup before exiting
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from ..backup import BackupCycle, BackupLoop
from ..config import SidecarConfig
from ..errors import ConfigMissingError, RestoreIncompleteError, StateSyncError
from ..main import SHUTDOWN_SIGNALS, setup_logging
from ..restore import Restorer
from ..store import ObjectStore, create_object_store

logger = logging.getLogger(__name__)

MODES = ("restore", "backup", "loop")


class SyncCommand:
    """Executes a single CLI mode against the configured bucket.

    Attributes:
        config: Sidecar configuration
        store: Object store (created from config if not provided)
        backup_loop: Backup loop while loop mode is running
    """

    def __init__(self, config: SidecarConfig, store: ObjectStore | None = None) -> None:
        self.config = config
        self.store = store
        self.backup_loop: BackupLoop | None = None

    async def run(self, mode: str) -> int:
        """Run the given mode.

        Returns:
            Process exit code
        """
        if mode not in MODES:
            raise ValueError(f"Unknown mode '{mode}'. Must be one of: {', '.join(MODES)}")

        if not self.config.backup.enabled:
            logger.info("Backup sync disabled (BACKUP_ENABLED=false).")
            return 0

        try:
            if self.store is None:
                self.store = create_object_store(self.config)
        except ConfigMissingError as e:
            logger.warning(f"{e}. Attach a bucket to enable backup sync.")
            return 0

        try:
            await self.store.connect()
        except StateSyncError as e:
            logger.error(f"Object store unavailable: {e}")
            return 1

        try:
            if mode == "restore":
                return await self._restore()
            if mode == "backup":
                return await self._backup()
            return await self._loop()
        finally:
            await self.store.close()

    def request_stop(self) -> None:
        """Stop loop mode after a final backup."""
        if self.backup_loop is not None:
            self.backup_loop.stop()

    async def _restore(self) -> int:
        try:
            await Restorer(self.config, self.store).restore()
        except RestoreIncompleteError as e:
            logger.error(f"Restore failed: {e}")
            return 1
        return 0

    async def _backup(self) -> int:
        result = await BackupCycle(self.config, self.store).run()
        return 0 if result.success else 1

    async def _loop(self) -> int:
        self.backup_loop = BackupLoop(
            BackupCycle(self.config, self.store),
            interval_seconds=self.config.backup.interval_seconds,
        )
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self.request_stop)
        try:
            await self.backup_loop.run()
        finally:
            for sig in SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(sig)
        return 0


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for the sync tool."""
    parser = argparse.ArgumentParser(
        prog="statesync",
        description="Restore or back up OpenClaw state to an S3-compatible bucket",
    )
    parser.add_argument(
        "mode",
        nargs="?",
        default="loop",
        choices=MODES,
        help="restore, backup, or loop (default: loop)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    try:
        config = SidecarConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if config.backup_error:
        print(f"Configuration error: {config.backup_error}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.observability, verbose=args.verbose)

    command = SyncCommand(config)
    sys.exit(asyncio.run(command.run(args.mode)))


if __name__ == "__main__":
    main()
