"""
Configuration management for the state sync sidecar.

All configuration is done via environment variables - the names match the
variables Railway injects when a Bucket is attached to the service.
This module provides typed configuration classes with validation.

Invariants:
    - All settings except the bucket transport have sensible defaults
    - Missing transport settings disable backup, they never fail the process
    - Malformed backup settings disable backup; only gateway and logging
      settings can fail startup
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names stable; templates in the wild set them
"""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigMissingError

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_COMMAND = "node openclaw.mjs gateway --allow-unconfigured --bind lan --port {port}"


@dataclass(frozen=True)
class S3Config:
    """Bucket transport configuration.

    Attributes:
        bucket: S3 bucket name
        access_key_id: S3 access key ID
        secret_access_key: S3 secret access key
        endpoint_url: S3 endpoint URL (e.g. https://storage.railway.app)
        region: S3 region (typically "auto" on Railway)
        prefix: Prefix inside the bucket holding this deployment's state
    """

    bucket: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    endpoint_url: str | None = None
    region: str | None = None
    prefix: str = "openclaw-state"

    # Env var name for each required transport field, in check order.
    REQUIRED_ENV = (
        ("bucket", "BUCKET"),
        ("access_key_id", "ACCESS_KEY_ID"),
        ("secret_access_key", "SECRET_ACCESS_KEY"),
        ("endpoint_url", "ENDPOINT"),
        ("region", "REGION"),
    )

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("BUCKET") or None,
            access_key_id=os.getenv("ACCESS_KEY_ID") or None,
            secret_access_key=os.getenv("SECRET_ACCESS_KEY") or None,
            endpoint_url=os.getenv("ENDPOINT") or None,
            region=os.getenv("REGION") or None,
            prefix=os.getenv("BACKUP_S3_PREFIX", "openclaw-state").strip("/"),
        )

    def missing(self) -> list[str]:
        """Names of required env vars that are not set."""
        return [env for attr, env in self.REQUIRED_ENV if not getattr(self, attr)]

    def key(self, *parts: str) -> str:
        """Build an object key under the configured prefix."""
        return "/".join([self.prefix, *(p.strip("/") for p in parts if p)])


@dataclass(frozen=True)
class StateConfig:
    """Local state layout.

    Attributes:
        state_dir: Directory holding all durable gateway state
        staging_dir: Scratch directory for SQLite snapshots
        sentinel_name: File whose presence means the state dir is initialized
        database_subdir: Subfolder of state_dir holding live SQLite databases
    """

    state_dir: str = "/data/.openclaw"
    staging_dir: str = "/tmp/openclaw-sqlite-backup"
    sentinel_name: str = "openclaw.json"
    database_subdir: str = "memory"

    @classmethod
    def from_env(cls) -> StateConfig:
        """Load configuration from environment variables."""
        return cls(
            state_dir=os.getenv("OPENCLAW_STATE_DIR", "/data/.openclaw"),
            staging_dir=os.getenv("BACKUP_SQLITE_STAGING_DIR", "/tmp/openclaw-sqlite-backup"),
        )

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    @property
    def staging_path(self) -> Path:
        return Path(self.staging_dir)

    @property
    def database_path(self) -> Path:
        return self.state_path / self.database_subdir

    @property
    def sentinel_path(self) -> Path:
        return self.state_path / self.sentinel_name


@dataclass(frozen=True)
class BackupConfig:
    """Backup scheduling configuration.

    Attributes:
        enabled: Whether backup sync is enabled at all
        interval_seconds: Seconds between backups in loop mode
        sqlite_busy_timeout_seconds: How long a snapshot waits on a locked database
    """

    enabled: bool = True
    interval_seconds: int = 300
    sqlite_busy_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=os.getenv("BACKUP_ENABLED", "true").lower() != "false",
            interval_seconds=int(os.getenv("BACKUP_INTERVAL_SEC", "300")),
            sqlite_busy_timeout_seconds=float(os.getenv("BACKUP_SQLITE_BUSY_TIMEOUT_SEC", "5.0")),
        )


@dataclass(frozen=True)
class GatewayConfig:
    """Supervised gateway process configuration.

    Attributes:
        command: Argument vector used to start the gateway
        port: Port exported to the gateway as PORT
        stop_timeout_seconds: Grace period after SIGTERM before SIGKILL
        inject_config: Whether to merge Railway settings into the gateway config
    """

    command: tuple[str, ...] = tuple(DEFAULT_GATEWAY_COMMAND.format(port=18789).split())
    port: int = 18789
    stop_timeout_seconds: float = 30.0
    inject_config: bool = True

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Load configuration from environment variables."""
        port = int(os.getenv("PORT", "18789"))
        raw_command = os.getenv("GATEWAY_COMMAND") or DEFAULT_GATEWAY_COMMAND.format(port=port)
        return cls(
            command=tuple(shlex.split(raw_command)),
            port=port,
            stop_timeout_seconds=float(os.getenv("GATEWAY_STOP_TIMEOUT_SEC", "30")),
            inject_config=os.getenv("GATEWAY_INJECT_CONFIG", "true").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
        )


@dataclass
class SidecarConfig:
    """Complete sidecar configuration.

    This aggregates all configuration sections and provides validation.
    Built once at startup and passed explicitly to every component.

    Attributes:
        s3: Bucket transport configuration
        state: Local state layout
        backup: Backup scheduling configuration
        gateway: Supervised gateway configuration
        observability: Logging configuration
        backup_error: Why backup was disabled by a malformed setting, if it was
    """

    s3: S3Config = field(default_factory=S3Config)
    state: StateConfig = field(default_factory=StateConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    backup_error: str | None = None

    @classmethod
    def from_env(cls) -> SidecarConfig:
        """Load complete configuration from environment variables.

        Returns:
            SidecarConfig with all sections populated from environment.

        Malformed backup settings do not raise: backup is disabled and the
        problem is kept in backup_error.

        Raises:
            ValueError: If a gateway or logging setting is malformed.
        """
        config = cls(
            s3=S3Config.from_env(),
            state=StateConfig.from_env(),
            gateway=GatewayConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        try:
            config.backup = BackupConfig.from_env()
            config.validate_backup()
        except ValueError as e:
            # A broken backup setting costs the backups, not the gateway.
            config.backup = BackupConfig(enabled=False)
            config.backup_error = str(e)

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.backup.enabled:
            self.validate_backup()
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )
        if not self.gateway.command:
            raise ValueError("GATEWAY_COMMAND must not be empty")

    def validate_backup(self) -> None:
        """Validate the settings only backup and restore depend on.

        Raises:
            ValueError: If a backup setting is invalid.
        """
        if self.backup.interval_seconds <= 0:
            raise ValueError(
                f"BACKUP_INTERVAL_SEC must be positive, got {self.backup.interval_seconds}"
            )
        if self.backup.sqlite_busy_timeout_seconds < 0:
            raise ValueError(
                "BACKUP_SQLITE_BUSY_TIMEOUT_SEC must not be negative, "
                f"got {self.backup.sqlite_busy_timeout_seconds}"
            )
        if not self.s3.prefix:
            raise ValueError("BACKUP_S3_PREFIX must not be empty")

    def validate_transport(self) -> None:
        """Check that the bucket transport is fully configured.

        Raises:
            ConfigMissingError: If any required transport variable is unset.
        """
        missing = self.s3.missing()
        if missing:
            raise ConfigMissingError(missing)

    @property
    def backup_active(self) -> bool:
        """Whether backup and restore should run for this process."""
        return self.backup.enabled and not self.s3.missing()

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Sidecar configuration loaded",
            extra={
                "backup_enabled": self.backup.enabled,
                "backup_active": self.backup_active,
                "backup_error": self.backup_error,
                "bucket": self.s3.bucket,
                "endpoint": self.s3.endpoint_url,
                "region": self.s3.region,
                "prefix": self.s3.prefix,
                "access_key_id": "***" if self.s3.access_key_id else None,
                "state_dir": self.state.state_dir,
                "staging_dir": self.state.staging_dir,
                "interval_seconds": self.backup.interval_seconds,
                "gateway_port": self.gateway.port,
                "log_level": self.observability.log_level,
            },
        )
