"""
Helpers shared by state sync tests.

Every test gets its own state dir, staging dir and in-memory bucket, so
nothing touches /data, /tmp/openclaw-sqlite-backup or the network.
"""

import sqlite3
from pathlib import Path

from sidecar.statesync.config import (
    BackupConfig,
    GatewayConfig,
    S3Config,
    SidecarConfig,
    StateConfig,
)

PREFIX = "openclaw-state"


def make_config(root: Path, **overrides) -> SidecarConfig:
    """Build a fully configured SidecarConfig rooted at root."""
    config = SidecarConfig(
        s3=S3Config(
            bucket="test-bucket",
            access_key_id="test-key",
            secret_access_key="test-secret",
            endpoint_url="https://storage.example.com",
            region="auto",
            prefix=PREFIX,
        ),
        state=StateConfig(
            state_dir=str(root / "state"),
            staging_dir=str(root / "staging"),
        ),
        backup=BackupConfig(enabled=True, interval_seconds=300),
        gateway=GatewayConfig(command=("true",), inject_config=False),
    )
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


def write_file(root: Path, relative: str, body: bytes = b"data") -> Path:
    """Create root/relative with body, making parent dirs."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(body)
    return path


def create_database(path: Path, rows: int = 3) -> None:
    """Create a WAL-mode SQLite database with a populated table."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("CREATE TABLE IF NOT EXISTS chunks (id INTEGER PRIMARY KEY, text TEXT)")
        conn.executemany(
            "INSERT INTO chunks (text) VALUES (?)",
            [(f"chunk {i}",) for i in range(rows)],
        )
        conn.commit()
    finally:
        conn.close()


def tree(root: Path) -> dict[str, bytes]:
    """Map of relative posix path -> contents for every file under root."""
    if not root.exists():
        return {}
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


