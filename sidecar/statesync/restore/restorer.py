"""
Restore-on-boot for the state sync sidecar.

Hydrates the local state directory from the bucket when the volume is
fresh (new deploy, wiped volume, or OPENCLAW_STATE_DIR switched to an
empty path). The decision is driven entirely by a sentinel file: if the
gateway config already exists locally, the volume holds live state and
restoring could clobber newer local data with an older remote copy.

The restore process:
1. Sentinel present → skip
2. Remote namespace empty → skip (fresh install)
3. Pull <prefix>/files/ into the state dir
4. Pull <prefix>/sqlite/ into <state dir>/memory/ (if present)

Invariants:
    - Never runs when the sentinel exists, regardless of remote content
    - Pull is additive; local files are never deleted
    - Both pulls complete, or RestoreIncompleteError is raised

How to change safely:
    - Keep the sentinel name in sync with the gateway's config file
    - Test the fresh-install path with an empty bucket
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..config import SidecarConfig
from ..errors import RestoreIncompleteError, TransportError
from ..store.base import ObjectStore
from ..sync import ExclusionPolicy, MirrorEngine, MirrorResult, SyncDirection

logger = logging.getLogger(__name__)


class RestoreStatus(str, Enum):
    """Outcome of a restore attempt."""

    RESTORED = "restored"
    SKIPPED_LOCAL_STATE = "skipped_local_state"
    SKIPPED_EMPTY_REMOTE = "skipped_empty_remote"


@dataclass
class RestoreResult:
    """Result of a restore operation.

    Attributes:
        status: What the restorer did
        files: Pull result for files/ (if it ran)
        databases: Pull result for sqlite/ (if it ran)
        duration_ms: Total restore duration
    """

    status: RestoreStatus
    files: MirrorResult | None = None
    databases: MirrorResult | None = None
    duration_ms: int = 0

    @property
    def skipped(self) -> bool:
        return self.status != RestoreStatus.RESTORED


def should_restore(state_dir: str | Path, sentinel_name: str = "openclaw.json") -> bool:
    """Decide whether the state dir must be hydrated from the bucket.

    Args:
        state_dir: Local state directory
        sentinel_name: File whose presence marks initialized state

    Returns:
        False if the sentinel exists, True otherwise
    """
    return not (Path(state_dir) / sentinel_name).exists()


class Restorer:
    """Pulls state from the bucket into a fresh state directory.

    Attributes:
        config: Sidecar configuration
        store: Connected object store
        engine: Mirror engine over the same store

    Example:
        >>> restorer = Restorer(config, store)
        >>> result = await restorer.restore()
        >>> print(result.status.value)
    """

    def __init__(
        self,
        config: SidecarConfig,
        store: ObjectStore,
        engine: MirrorEngine | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.engine = engine or MirrorEngine(store)
        self.policy = ExclusionPolicy.for_restore()

    async def restore(self) -> RestoreResult:
        """Execute the restore decision and, if needed, the pull.

        Returns:
            RestoreResult describing what happened

        Raises:
            RestoreIncompleteError: If the bucket could not be read fully
        """
        start_time = time.time()
        state = self.config.state
        s3 = self.config.s3

        if not should_restore(state.state_path, state.sentinel_name):
            logger.info(f"Local state exists ({state.sentinel_path}), skipping restore.")
            return RestoreResult(status=RestoreStatus.SKIPPED_LOCAL_STATE)

        logger.info("Local state dir is empty, restoring from bucket...")
        state.state_path.mkdir(parents=True, exist_ok=True)

        namespace = s3.key() + "/"
        try:
            has_remote = await self.store.any_objects(namespace)
        except TransportError as e:
            raise RestoreIncompleteError(f"Could not list {namespace}: {e}") from e

        if not has_remote:
            logger.info(f"Bucket is empty ({namespace}), nothing to restore. Fresh install.")
            return RestoreResult(
                status=RestoreStatus.SKIPPED_EMPTY_REMOTE,
                duration_ms=int((time.time() - start_time) * 1000),
            )

        result = RestoreResult(status=RestoreStatus.RESTORED)
        try:
            result.files = await self.engine.mirror(
                SyncDirection.PULL,
                state.state_path,
                s3.key("files"),
                self.policy,
            )
            logger.info(f"Restored {result.files.downloaded} file(s) from bucket.")

            if await self.store.any_objects(s3.key("sqlite") + "/"):
                state.database_path.mkdir(parents=True, exist_ok=True)
                result.databases = await self.engine.mirror(
                    SyncDirection.PULL,
                    state.database_path,
                    s3.key("sqlite"),
                    self.policy,
                )
                logger.info(
                    f"Restored {result.databases.downloaded} SQLite database(s) from bucket."
                )

        except (TransportError, OSError) as e:
            logger.error(f"Restore incomplete: {e}")
            raise RestoreIncompleteError(f"Restore incomplete: {e}") from e

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info("Restore complete.", extra={"duration_ms": result.duration_ms})
        return result
