"""
Directory mirroring between the local filesystem and the object store.

The MirrorEngine is the remote sync engine: it makes a key prefix in the
bucket reflect a local directory tree (push) or hydrates a local directory
from a prefix (pull), applying an exclusion policy in both directions.

Key layout:
    <remote_prefix>/<path relative to local root, "/"-separated>

Change detection:
    push - upload if the key is missing, sizes differ, or the local file
           is newer than the object and its MD5 differs from the ETag
    pull - download if the file is missing, sizes differ, or the object
           is newer than the file; the file's mtime is then set to the
           object's timestamp so a re-run is a no-op

Invariants:
    - Re-running with no changes transfers nothing
    - Pull never deletes local files
    - Push with delete_orphans removes remote keys with no local file,
      except keys matched by an exclusion pattern
    - A transport error aborts the call; nothing is retried here

How to change safely:
    - Keep key layout stable; older sidecars restore from it
    - Test the push/pull round trip after changing change detection
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import mimetypes
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from ..store.base import ObjectStore, RemoteObject
from .exclusion import ExclusionPolicy

logger = logging.getLogger(__name__)

# Float round-trip slack when comparing utime-stamped files with the store.
MTIME_TOLERANCE_SECONDS = 0.001


class SyncDirection(str, Enum):
    """Mirror operation direction."""

    PUSH = "push"
    PULL = "pull"


@dataclass
class MirrorResult:
    """Counters for one mirror call.

    Attributes:
        direction: Push or pull
        local_path: Local root that was mirrored
        remote_prefix: Remote prefix that was mirrored
        uploaded: Objects written to the store
        downloaded: Files written locally
        deleted: Remote orphans removed
        skipped: Entries already up to date
        excluded: Entries matched by the exclusion policy
        bytes_transferred: Payload bytes moved in either direction
    """

    direction: SyncDirection
    local_path: str
    remote_prefix: str
    uploaded: int = 0
    downloaded: int = 0
    deleted: int = 0
    skipped: int = 0
    excluded: int = 0
    bytes_transferred: int = 0

    @property
    def transferred(self) -> int:
        """Number of objects moved in either direction."""
        return self.uploaded + self.downloaded


@dataclass(frozen=True)
class LocalFile:
    """A file found while scanning the local root."""

    relative: str
    path: Path
    size: int
    mtime: float


class MirrorEngine:
    """Mirrors directory trees to and from an object store prefix.

    Attributes:
        store: ObjectStore transport

    Example:
        >>> engine = MirrorEngine(store)
        >>> result = await engine.mirror(
        ...     SyncDirection.PUSH, "/data/.openclaw", "openclaw-state/files",
        ...     ExclusionPolicy.for_backup(), delete_orphans=True,
        ... )
        >>> print(f"uploaded={result.uploaded} deleted={result.deleted}")
    """

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    async def mirror(
        self,
        direction: SyncDirection,
        local_path: Union[str, Path],
        remote_prefix: str,
        excludes: Union[ExclusionPolicy, Iterable[str]] = (),
        delete_orphans: bool = False,
    ) -> MirrorResult:
        """Mirror local_path and remote_prefix in the given direction.

        Args:
            direction: PUSH (local → remote) or PULL (remote → local)
            local_path: Local directory root
            remote_prefix: Key prefix, without trailing "/"
            excludes: ExclusionPolicy or iterable of glob patterns
            delete_orphans: Delete remote keys absent locally (push only)

        Returns:
            MirrorResult with transfer counters

        Raises:
            TransportError: If the store fails mid-sync
            ValueError: If delete_orphans is requested for a pull
            FileNotFoundError: If pushing from a missing directory
        """
        policy = excludes if isinstance(excludes, ExclusionPolicy) else ExclusionPolicy(tuple(excludes))
        root = Path(local_path)
        prefix = remote_prefix.strip("/")
        direction = SyncDirection(direction)

        if direction == SyncDirection.PUSH:
            result = await self._push(root, prefix, policy, delete_orphans)
        else:
            if delete_orphans:
                raise ValueError("Pull never deletes local files; delete_orphans must be False")
            result = await self._pull(root, prefix, policy)

        logger.info(
            f"Mirror {direction.value} {root} <-> {prefix}/ complete",
            extra={
                "uploaded": result.uploaded,
                "downloaded": result.downloaded,
                "deleted": result.deleted,
                "skipped": result.skipped,
                "excluded": result.excluded,
                "bytes": result.bytes_transferred,
            },
        )
        return result

    async def _push(
        self,
        root: Path,
        prefix: str,
        policy: ExclusionPolicy,
        delete_orphans: bool,
    ) -> MirrorResult:
        if not root.is_dir():
            raise FileNotFoundError(f"Local path does not exist: {root}")

        loop = asyncio.get_running_loop()
        result = MirrorResult(SyncDirection.PUSH, str(root), prefix)

        local_files, excluded = await loop.run_in_executor(None, scan_local, root, policy)
        result.excluded = excluded

        remote = {
            obj.relative_to(prefix): obj
            for obj in await self.store.list_objects(prefix + "/")
        }

        for relative in sorted(local_files):
            local = local_files[relative]
            if not await loop.run_in_executor(None, needs_upload, local, remote.get(relative)):
                result.skipped += 1
                continue

            try:
                body = await loop.run_in_executor(None, local.path.read_bytes)
            except FileNotFoundError:
                # Removed by the gateway since the scan
                logger.debug(f"Skipping vanished file {relative}")
                local_files.pop(relative)
                result.skipped += 1
                continue
            except OSError as e:
                logger.warning(f"Cannot read {local.path}, skipping: {e}")
                result.skipped += 1
                continue

            content_type, _ = mimetypes.guess_type(relative)
            await self.store.put_object(f"{prefix}/{relative}", body, content_type=content_type)
            result.uploaded += 1
            result.bytes_transferred += len(body)

        if delete_orphans:
            orphans = [
                obj.key
                for relative, obj in sorted(remote.items())
                if relative not in local_files and not policy.matches(relative)
            ]
            if orphans:
                await self.store.delete_objects(orphans)
                result.deleted = len(orphans)

        return result

    async def _pull(self, root: Path, prefix: str, policy: ExclusionPolicy) -> MirrorResult:
        loop = asyncio.get_running_loop()
        result = MirrorResult(SyncDirection.PULL, str(root), prefix)
        resolved_root = root.resolve()

        for obj in await self.store.list_objects(prefix + "/"):
            relative = obj.relative_to(prefix)
            if not relative or relative.endswith("/"):
                # Directory placeholder objects
                continue
            if policy.matches(relative):
                result.excluded += 1
                continue

            dest = root / relative
            if not dest.resolve().is_relative_to(resolved_root):
                logger.warning(f"Refusing to restore {obj.key} outside {root}")
                result.skipped += 1
                continue

            if not await loop.run_in_executor(None, needs_download, obj, dest):
                result.skipped += 1
                continue

            body = await self.store.get_object(obj.key)
            await loop.run_in_executor(None, write_atomic, dest, body, obj.last_modified)
            result.downloaded += 1
            result.bytes_transferred += len(body)

        return result


def scan_local(root: Path, policy: ExclusionPolicy) -> tuple[dict[str, LocalFile], int]:
    """Walk root and collect files not matched by policy.

    Returns:
        (files keyed by relative posix path, number of excluded files)
    """
    files: dict[str, LocalFile] = {}
    excluded = 0

    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            relative = path.relative_to(root).as_posix()
            if policy.matches(relative):
                excluded += 1
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if not path.is_file():
                continue
            files[relative] = LocalFile(
                relative=relative,
                path=path,
                size=stat.st_size,
                mtime=stat.st_mtime,
            )

    return files, excluded


def needs_upload(local: LocalFile, remote: Optional[RemoteObject]) -> bool:
    """Decide whether a local file differs from its remote copy."""
    if remote is None:
        return True
    if local.size != remote.size:
        return True
    if local.mtime <= remote.last_modified:
        return False
    # Touched since upload: only re-send if the bytes actually changed.
    if not remote.etag or "-" in remote.etag:
        # Multipart ETags are not content hashes
        return True
    try:
        return file_md5(local.path) != remote.etag
    except OSError:
        return True


def needs_download(remote: RemoteObject, dest: Path) -> bool:
    """Decide whether a remote object should overwrite dest."""
    try:
        stat = dest.stat()
    except FileNotFoundError:
        return True
    if stat.st_size != remote.size:
        return True
    return remote.last_modified - stat.st_mtime > MTIME_TOLERANCE_SECONDS


def file_md5(path: Path) -> str:
    """MD5 hex digest of a file, streamed in chunks."""
    md5 = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            md5.update(chunk)
    return md5.hexdigest()


def write_atomic(dest: Path, body: bytes, mtime: Optional[float] = None) -> None:
    """Write body to dest via a temp file and rename, then set mtime."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(f".{dest.name}.{os.getpid()}.download")
    try:
        tmp.write_bytes(body)
        os.replace(tmp, dest)
    finally:
        tmp.unlink(missing_ok=True)
    stamp = time.time() if mtime is None else mtime
    os.utime(dest, (stamp, stamp))
