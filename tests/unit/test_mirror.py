"""
Unit tests for the directory mirror engine.

Tests cover:
- Push/pull round trip with exclusions
- Orphan deletion on push, additive pull
- Incremental change detection
- Transport failures
"""

import hashlib
import os
import time

import pytest

from sidecar.statesync.errors import TransportError
from sidecar.statesync.sync import ExclusionPolicy, MirrorEngine, SyncDirection
from sidecar.statesync.sync.mirror import LocalFile, needs_upload
from sidecar.statesync.store.base import RemoteObject

from tests.helpers import tree, write_file

PREFIX = "openclaw-state/files"


@pytest.fixture
def local(tmp_path):
    root = tmp_path / "local"
    root.mkdir()
    return root


class TestMirrorRoundTrip:
    """Push followed by pull reproduces the tree minus exclusions."""

    @pytest.mark.asyncio
    async def test_round_trip(self, store, local, tmp_path):
        """The restored tree equals the source minus excluded files."""
        await store.connect()
        engine = MirrorEngine(store)
        policy = ExclusionPolicy.for_backup()

        write_file(local, "openclaw.json", b'{"gateway": {}}')
        write_file(local, "agents/main/sessions/s1.jsonl", b'{"role": "user"}\n')
        write_file(local, "credentials/whatsapp/creds.json", b"{}")
        write_file(local, "memory/notes.md", b"# notes")
        write_file(local, "memory/main.sqlite", b"live db")
        write_file(local, "memory/main.sqlite-wal", b"wal")
        write_file(local, "media/inbound/pic.png", b"png")
        write_file(local, "gateway.lock", b"")
        write_file(local, "empty.txt", b"")

        pushed = await engine.mirror(SyncDirection.PUSH, local, PREFIX, policy, delete_orphans=True)

        restored = tmp_path / "restored"
        pulled = await engine.mirror(SyncDirection.PULL, restored, PREFIX, policy)

        expected = {k: v for k, v in tree(local).items() if not policy.matches(k)}
        assert tree(restored) == expected
        assert pushed.uploaded == 5
        assert pushed.excluded == 4
        assert pulled.downloaded == 5

    @pytest.mark.asyncio
    async def test_keys_use_posix_layout(self, store, local):
        """Objects are stored at <prefix>/<relative path>."""
        await store.connect()
        write_file(local, "agents/main/a.json", b"{}")

        await MirrorEngine(store).mirror(SyncDirection.PUSH, local, PREFIX)

        assert store.keys() == [f"{PREFIX}/agents/main/a.json"]
        assert store.content_type(f"{PREFIX}/agents/main/a.json") == "application/json"

    @pytest.mark.asyncio
    async def test_pull_sets_remote_mtime(self, store, tmp_path):
        """Pulled files carry the object's timestamp, so re-pull is a no-op."""
        await store.connect()
        store.seed(f"{PREFIX}/a.txt", b"hello", last_modified=1_700_000_000.25)
        engine = MirrorEngine(store)
        dest = tmp_path / "dest"

        await engine.mirror(SyncDirection.PULL, dest, PREFIX)
        again = await engine.mirror(SyncDirection.PULL, dest, PREFIX)

        assert abs(os.stat(dest / "a.txt").st_mtime - 1_700_000_000.25) < 0.01
        assert again.downloaded == 0
        assert again.skipped == 1


class TestMirrorPush:
    """Tests for push behaviour."""

    @pytest.mark.asyncio
    async def test_deletes_orphans(self, store, local):
        """Remote keys with no local file are removed."""
        await store.connect()
        store.seed(f"{PREFIX}/gone.json", b"old")
        write_file(local, "kept.json", b"{}")

        result = await MirrorEngine(store).mirror(
            SyncDirection.PUSH, local, PREFIX, delete_orphans=True
        )

        assert result.deleted == 1
        assert store.keys(PREFIX) == [f"{PREFIX}/kept.json"]

    @pytest.mark.asyncio
    async def test_keeps_orphans_without_delete(self, store, local):
        """Without delete_orphans, extra remote keys survive."""
        await store.connect()
        store.seed(f"{PREFIX}/gone.json", b"old")
        write_file(local, "kept.json", b"{}")

        result = await MirrorEngine(store).mirror(SyncDirection.PUSH, local, PREFIX)

        assert result.deleted == 0
        assert f"{PREFIX}/gone.json" in store.keys()

    @pytest.mark.asyncio
    async def test_excluded_remote_keys_survive_delete(self, store, local):
        """Orphan deletion never touches excluded keys."""
        await store.connect()
        store.seed(f"{PREFIX}/memory/main.sqlite", b"old upload")
        write_file(local, "openclaw.json", b"{}")

        await MirrorEngine(store).mirror(
            SyncDirection.PUSH, local, PREFIX, ExclusionPolicy.for_backup(), delete_orphans=True
        )

        assert f"{PREFIX}/memory/main.sqlite" in store.keys()

    @pytest.mark.asyncio
    async def test_does_not_touch_sibling_prefixes(self, store, local):
        """Deletion is scoped to the mirrored prefix."""
        await store.connect()
        store.seed("openclaw-state/sqlite/main.sqlite", b"db")
        store.seed("openclaw-state/backup-marker.json", b"{}")
        write_file(local, "a.json", b"{}")

        await MirrorEngine(store).mirror(SyncDirection.PUSH, local, PREFIX, delete_orphans=True)

        assert "openclaw-state/sqlite/main.sqlite" in store.keys()
        assert "openclaw-state/backup-marker.json" in store.keys()

    @pytest.mark.asyncio
    async def test_incremental_noop(self, store, local):
        """A second push with no local changes transfers nothing."""
        await store.connect()
        engine = MirrorEngine(store)
        write_file(local, "a.json", b"{}")
        write_file(local, "b/c.txt", b"text")

        await engine.mirror(SyncDirection.PUSH, local, PREFIX, delete_orphans=True)
        store.reset_counters()
        second = await engine.mirror(SyncDirection.PUSH, local, PREFIX, delete_orphans=True)

        assert second.uploaded == 0
        assert second.deleted == 0
        assert second.skipped == 2
        assert store.put_count == 0

    @pytest.mark.asyncio
    async def test_changed_file_uploaded(self, store, local):
        """A modified file is re-uploaded."""
        await store.connect()
        engine = MirrorEngine(store)
        path = write_file(local, "a.json", b"{}")
        await engine.mirror(SyncDirection.PUSH, local, PREFIX)

        path.write_bytes(b'{"changed": true}')
        result = await engine.mirror(SyncDirection.PUSH, local, PREFIX)

        assert result.uploaded == 1
        assert store.read(f"{PREFIX}/a.json") == b'{"changed": true}'

    @pytest.mark.asyncio
    async def test_missing_local_dir(self, store, tmp_path):
        """Pushing a missing directory fails instead of wiping the remote."""
        await store.connect()
        store.seed(f"{PREFIX}/a.json", b"{}")

        with pytest.raises(FileNotFoundError):
            await MirrorEngine(store).mirror(
                SyncDirection.PUSH, tmp_path / "nope", PREFIX, delete_orphans=True
            )

        assert store.keys() == [f"{PREFIX}/a.json"]

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, store, local):
        """A failing put aborts the mirror."""
        await store.connect()
        write_file(local, "a.json", b"{}")
        store.inject_failure(TransportError("bucket unavailable"), operation="put")

        with pytest.raises(TransportError):
            await MirrorEngine(store).mirror(SyncDirection.PUSH, local, PREFIX)


class TestMirrorPull:
    """Tests for pull behaviour."""

    @pytest.mark.asyncio
    async def test_never_deletes_local(self, store, local):
        """Local files absent remotely are kept."""
        await store.connect()
        write_file(local, "local-only.txt", b"mine")
        store.seed(f"{PREFIX}/remote.txt", b"theirs")

        await MirrorEngine(store).mirror(SyncDirection.PULL, local, PREFIX)

        assert tree(local) == {"local-only.txt": b"mine", "remote.txt": b"theirs"}

    @pytest.mark.asyncio
    async def test_rejects_delete_orphans(self, store, local):
        """delete_orphans is a push-only option."""
        await store.connect()

        with pytest.raises(ValueError):
            await MirrorEngine(store).mirror(SyncDirection.PULL, local, PREFIX, delete_orphans=True)

    @pytest.mark.asyncio
    async def test_skips_excluded(self, store, local):
        """Excluded keys are not downloaded."""
        await store.connect()
        store.seed(f"{PREFIX}/media/x.png", b"png")
        store.seed(f"{PREFIX}/a.json", b"{}")

        result = await MirrorEngine(store).mirror(
            SyncDirection.PULL, local, PREFIX, ExclusionPolicy.for_restore()
        )

        assert tree(local) == {"a.json": b"{}"}
        assert result.excluded == 1

    @pytest.mark.asyncio
    async def test_refuses_path_traversal(self, store, tmp_path):
        """Keys escaping the local root are skipped."""
        await store.connect()
        store.seed(f"{PREFIX}/../evil.txt", b"x")
        dest = tmp_path / "dest"

        result = await MirrorEngine(store).mirror(SyncDirection.PULL, dest, PREFIX)

        assert not (tmp_path / "evil.txt").exists()
        assert result.downloaded == 0

    @pytest.mark.asyncio
    async def test_remote_newer_overwrites(self, store, local):
        """A newer remote object replaces an older local file of equal size."""
        await store.connect()
        path = write_file(local, "a.txt", b"old!")
        past = time.time() - 3600
        os.utime(path, (past, past))
        store.seed(f"{PREFIX}/a.txt", b"new!")

        result = await MirrorEngine(store).mirror(SyncDirection.PULL, local, PREFIX)

        assert result.downloaded == 1
        assert path.read_bytes() == b"new!"

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, store, local):
        """A failing list aborts the pull."""
        await store.connect()
        store.inject_failure(TransportError("timeout"), operation="list")

        with pytest.raises(TransportError):
            await MirrorEngine(store).mirror(SyncDirection.PULL, local, PREFIX)


class TestNeedsUpload:
    """Tests for push change detection."""

    def test_touched_but_identical(self, tmp_path):
        """A newer mtime with identical bytes does not upload."""
        path = write_file(tmp_path, "a.txt", b"same")
        local = LocalFile("a.txt", path, 4, time.time())
        remote = RemoteObject(
            key="p/a.txt",
            size=4,
            last_modified=time.time() - 60,
            etag=hashlib.md5(b"same").hexdigest(),
        )

        assert not needs_upload(local, remote)

    def test_touched_and_changed(self, tmp_path):
        """A newer mtime with different bytes of equal size uploads."""
        path = write_file(tmp_path, "a.txt", b"new!")
        local = LocalFile("a.txt", path, 4, time.time())
        remote = RemoteObject(
            key="p/a.txt",
            size=4,
            last_modified=time.time() - 60,
            etag=hashlib.md5(b"old!").hexdigest(),
        )

        assert needs_upload(local, remote)

    def test_older_local_skipped(self, tmp_path):
        """A local file older than the object is not uploaded."""
        path = write_file(tmp_path, "a.txt", b"new!")
        remote = RemoteObject(key="p/a.txt", size=4, last_modified=time.time() + 60, etag="x")

        assert not needs_upload(LocalFile("a.txt", path, 4, time.time()), remote)

    def test_missing_remote(self, tmp_path):
        """A file with no remote copy is uploaded."""
        path = write_file(tmp_path, "a.txt", b"x")

        assert needs_upload(LocalFile("a.txt", path, 1, time.time()), None)

    def test_size_differs(self, tmp_path):
        """A size mismatch uploads regardless of timestamps."""
        path = write_file(tmp_path, "a.txt", b"xy")
        remote = RemoteObject(key="p/a.txt", size=1, last_modified=time.time() + 60)

        assert needs_upload(LocalFile("a.txt", path, 2, time.time()), remote)

    def test_multipart_etag_uploads(self, tmp_path):
        """A multipart ETag cannot be compared, so newer files upload."""
        path = write_file(tmp_path, "a.txt", b"x")
        remote = RemoteObject(
            key="p/a.txt", size=1, last_modified=time.time() - 60, etag="abc-2"
        )

        assert needs_upload(LocalFile("a.txt", path, 1, time.time()), remote)
