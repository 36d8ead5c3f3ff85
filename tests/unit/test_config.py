"""
Unit tests for sidecar configuration.

Tests cover:
- Environment variable loading and defaults
- Transport completeness checks
- Validation of malformed settings
- Secret redaction in logged configuration
"""

import logging

import pytest

from sidecar.statesync.config import (
    BackupConfig,
    GatewayConfig,
    ObservabilityConfig,
    S3Config,
    SidecarConfig,
    StateConfig,
)
from sidecar.statesync.errors import ConfigMissingError

ALL_ENV = (
    "BUCKET",
    "ACCESS_KEY_ID",
    "SECRET_ACCESS_KEY",
    "ENDPOINT",
    "REGION",
    "BACKUP_S3_PREFIX",
    "OPENCLAW_STATE_DIR",
    "BACKUP_SQLITE_STAGING_DIR",
    "BACKUP_ENABLED",
    "BACKUP_INTERVAL_SEC",
    "BACKUP_SQLITE_BUSY_TIMEOUT_SEC",
    "GATEWAY_COMMAND",
    "PORT",
    "GATEWAY_STOP_TIMEOUT_SEC",
    "GATEWAY_INJECT_CONFIG",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every sidecar env var."""
    for name in ALL_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def transport_env(clean_env):
    """Set a complete bucket transport."""
    clean_env.setenv("BUCKET", "my-bucket")
    clean_env.setenv("ACCESS_KEY_ID", "AKIA123")
    clean_env.setenv("SECRET_ACCESS_KEY", "super-secret")
    clean_env.setenv("ENDPOINT", "https://storage.railway.app")
    clean_env.setenv("REGION", "auto")
    return clean_env


class TestS3Config:
    """Tests for bucket transport configuration."""

    def test_defaults_without_env(self, clean_env):
        """Unset transport vars load as None, prefix has a default."""
        config = S3Config.from_env()

        assert config.bucket is None
        assert config.endpoint_url is None
        assert config.prefix == "openclaw-state"

    def test_missing_lists_all_unset_in_order(self, clean_env):
        """missing() names every unset transport var."""
        config = S3Config.from_env()

        assert config.missing() == [
            "BUCKET",
            "ACCESS_KEY_ID",
            "SECRET_ACCESS_KEY",
            "ENDPOINT",
            "REGION",
        ]

    def test_missing_empty_when_complete(self, transport_env):
        """A complete transport has nothing missing."""
        assert S3Config.from_env().missing() == []

    def test_empty_string_counts_as_missing(self, transport_env):
        """An empty env var is treated like an unset one."""
        transport_env.setenv("REGION", "")

        assert S3Config.from_env().missing() == ["REGION"]

    def test_prefix_strips_slashes(self, clean_env):
        """Leading and trailing slashes are removed from the prefix."""
        clean_env.setenv("BACKUP_S3_PREFIX", "/team/openclaw/")

        assert S3Config.from_env().prefix == "team/openclaw"

    def test_key_building(self):
        """key() joins parts under the prefix."""
        config = S3Config(prefix="openclaw-state")

        assert config.key() == "openclaw-state"
        assert config.key("files") == "openclaw-state/files"
        assert config.key("backup-marker.json") == "openclaw-state/backup-marker.json"
        assert config.key("/sqlite/") == "openclaw-state/sqlite"


class TestStateConfig:
    """Tests for local state layout."""

    def test_defaults(self, clean_env):
        """Default paths match the container layout."""
        config = StateConfig.from_env()

        assert config.state_dir == "/data/.openclaw"
        assert config.staging_dir == "/tmp/openclaw-sqlite-backup"
        assert config.sentinel_path.name == "openclaw.json"
        assert config.database_path.as_posix() == "/data/.openclaw/memory"

    def test_env_override(self, clean_env, tmp_path):
        """OPENCLAW_STATE_DIR moves the state root."""
        clean_env.setenv("OPENCLAW_STATE_DIR", str(tmp_path))

        config = StateConfig.from_env()

        assert config.state_path == tmp_path
        assert config.sentinel_path == tmp_path / "openclaw.json"


class TestBackupConfig:
    """Tests for backup scheduling configuration."""

    def test_defaults(self, clean_env):
        """Backup is enabled every 300 seconds by default."""
        config = BackupConfig.from_env()

        assert config.enabled is True
        assert config.interval_seconds == 300
        assert config.sqlite_busy_timeout_seconds == 5.0

    @pytest.mark.parametrize("value", ["false", "False", "FALSE"])
    def test_disabled_only_by_false(self, clean_env, value):
        """BACKUP_ENABLED=false disables backup, case-insensitively."""
        clean_env.setenv("BACKUP_ENABLED", value)

        assert BackupConfig.from_env().enabled is False

    @pytest.mark.parametrize("value", ["true", "0", "no", ""])
    def test_other_values_keep_enabled(self, clean_env, value):
        """Any other value leaves backup enabled."""
        clean_env.setenv("BACKUP_ENABLED", value)

        assert BackupConfig.from_env().enabled is True

    def test_interval_from_env(self, clean_env):
        """BACKUP_INTERVAL_SEC is parsed as an integer."""
        clean_env.setenv("BACKUP_INTERVAL_SEC", "60")

        assert BackupConfig.from_env().interval_seconds == 60


class TestGatewayConfig:
    """Tests for gateway process configuration."""

    def test_default_command_uses_port(self, clean_env):
        """The default command binds the configured port."""
        clean_env.setenv("PORT", "8080")

        config = GatewayConfig.from_env()

        assert config.port == 8080
        assert config.command[:3] == ("node", "openclaw.mjs", "gateway")
        assert config.command[-2:] == ("--port", "8080")

    def test_custom_command_is_shell_split(self, clean_env):
        """GATEWAY_COMMAND honours shell quoting."""
        clean_env.setenv("GATEWAY_COMMAND", 'node app.js --name "my gateway"')

        config = GatewayConfig.from_env()

        assert config.command == ("node", "app.js", "--name", "my gateway")

    def test_inject_config_toggle(self, clean_env):
        """GATEWAY_INJECT_CONFIG=false disables config injection."""
        clean_env.setenv("GATEWAY_INJECT_CONFIG", "false")

        assert GatewayConfig.from_env().inject_config is False


class TestSidecarConfig:
    """Tests for the aggregated configuration."""

    def test_from_env_complete(self, transport_env):
        """A complete environment yields an active backup."""
        config = SidecarConfig.from_env()

        assert config.s3.bucket == "my-bucket"
        assert config.backup_active is True

    def test_backup_inactive_without_transport(self, clean_env):
        """Missing credentials make backup inactive without raising."""
        config = SidecarConfig.from_env()

        assert config.backup.enabled is True
        assert config.backup_active is False

    def test_backup_inactive_when_disabled(self, transport_env):
        """BACKUP_ENABLED=false wins over a complete transport."""
        transport_env.setenv("BACKUP_ENABLED", "false")

        assert SidecarConfig.from_env().backup_active is False

    def test_validate_transport_raises(self, clean_env):
        """validate_transport() names the missing vars."""
        clean_env.setenv("BUCKET", "my-bucket")
        config = SidecarConfig.from_env()

        with pytest.raises(ConfigMissingError) as exc_info:
            config.validate_transport()

        assert "BUCKET" not in exc_info.value.missing
        assert "ACCESS_KEY_ID" in exc_info.value.missing
        assert str(exc_info.value).startswith("Missing env vars: ACCESS_KEY_ID")

    @pytest.mark.parametrize(
        "name, value",
        [
            ("BACKUP_INTERVAL_SEC", "0"),
            ("BACKUP_INTERVAL_SEC", "5m"),
            ("BACKUP_SQLITE_BUSY_TIMEOUT_SEC", "x"),
            ("BACKUP_SQLITE_BUSY_TIMEOUT_SEC", "-1"),
            ("BACKUP_S3_PREFIX", "/"),
        ],
    )
    def test_malformed_backup_setting_disables_backup(self, transport_env, name, value):
        """A bad backup setting disables backup instead of failing startup."""
        transport_env.setenv(name, value)

        config = SidecarConfig.from_env()

        assert config.backup.enabled is False
        assert config.backup_active is False
        assert name in config.backup_error or value in config.backup_error

    def test_valid_config_has_no_backup_error(self, transport_env):
        """backup_error stays empty for a well-formed environment."""
        assert SidecarConfig.from_env().backup_error is None

    def test_validate_rejects_non_positive_interval(self):
        """validate() still checks the interval of an enabled backup."""
        config = SidecarConfig(backup=BackupConfig(interval_seconds=0))

        with pytest.raises(ValueError, match="BACKUP_INTERVAL_SEC"):
            config.validate()

    def test_rejects_unknown_log_format(self, clean_env):
        """LOG_FORMAT must be json or text."""
        clean_env.setenv("LOG_FORMAT", "xml")

        with pytest.raises(ValueError, match="LOG_FORMAT"):
            SidecarConfig.from_env()

    def test_rejects_empty_gateway_command(self, clean_env):
        """An empty gateway command is still fatal."""
        clean_env.setenv("GATEWAY_COMMAND", "   ")
        clean_env.setenv("BACKUP_INTERVAL_SEC", "5m")

        with pytest.raises(ValueError, match="GATEWAY_COMMAND"):
            SidecarConfig.from_env()

    def test_log_config_redacts_secrets(self, transport_env, caplog):
        """Logged configuration never includes credentials."""
        config = SidecarConfig.from_env()

        with caplog.at_level(logging.INFO, logger="sidecar.statesync.config"):
            config.log_config()

        record = caplog.records[-1]
        assert record.access_key_id == "***"
        assert "super-secret" not in str(record.__dict__)
        assert "AKIA123" not in str(record.__dict__)

    def test_observability_defaults(self, clean_env):
        """Text logging at INFO by default."""
        config = ObservabilityConfig.from_env()

        assert config.log_level == "INFO"
        assert config.log_format == "text"
