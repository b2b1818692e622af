"""Unit tests for configuration loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from toolguard.config import (
    EditConfig,
    ReadTrackingConfig,
    SandboxConfig,
    TelemetryConfig,
    ToolguardConfig,
    WriteConfig,
    load_config,
)


class TestEditConfig:
    """Tests for EditConfig."""

    def test_defaults(self):
        config = EditConfig()
        assert config.max_edits == 50
        assert config.max_string_length == 100_000
        assert config.max_file_bytes == 10 * 1024 * 1024

    def test_rejects_non_positive(self):
        with pytest.raises(ValidationError, match="positive"):
            EditConfig(max_edits=0)


class TestWriteConfig:
    """Tests for WriteConfig."""

    def test_default_mode(self):
        assert WriteConfig().default_file_mode == 0o644

    def test_rejects_bad_mode(self):
        with pytest.raises(ValidationError, match="Invalid file mode"):
            WriteConfig(default_file_mode=0o7777)


class TestReadTrackingConfig:
    """Tests for ReadTrackingConfig."""

    def test_default_is_hard_fail(self):
        assert ReadTrackingConfig().legacy_read_policy == "hard_fail"

    def test_normalizes_case(self):
        assert ReadTrackingConfig(legacy_read_policy=" Soft_Warn ").legacy_read_policy == "soft_warn"

    def test_rejects_unknown_policy(self):
        with pytest.raises(ValidationError, match="legacy_read_policy"):
            ReadTrackingConfig(legacy_read_policy="ignore")


class TestSandboxConfig:
    """Tests for SandboxConfig."""

    def test_defaults(self):
        config = SandboxConfig()
        assert config.default_timeout_ms == 25_000
        assert config.max_output_bytes == 1_048_576
        assert config.env_allowlist == ["PATH", "LANG", "LC_ALL", "TZ"]

    def test_command_allowlist(self):
        config = SandboxConfig()
        assert config.is_command_allowed("git")
        assert config.is_command_allowed("ls")
        assert not config.is_command_allowed("curl")

    def test_interpreters_blocked_even_if_allowlisted(self):
        config = SandboxConfig(allowed_commands=["bash", "ls"])
        assert not config.is_command_allowed("bash")
        assert config.is_command_allowed("ls")

    def test_rejects_zero_workers(self):
        with pytest.raises(ValidationError):
            SandboxConfig(max_workers=0)


class TestToolguardConfig:
    """Tests for complete configuration."""

    def test_defaults(self):
        config = ToolguardConfig()
        assert config.paths.forbidden_components == [".git", ".toolguard"]
        assert config.telemetry.log_path == ".toolguard/telemetry.jsonl"
        assert config.rate_limits.limits["run_command"] == (60, 60.0)
        assert config.approval.webhook.url is None

    def test_load_from_file(self, tmp_path: Path):
        config_file = tmp_path / "config.yml"
        config_file.write_text(
            """
edits:
  max_edits: 10
sandbox:
  default_timeout_ms: 1000
  allowed_commands: [ls, git]
rate_limits:
  limits:
    run_command: [5, 30]
git:
  extra_destructive_rules:
    "worktree remove": [["--force"]]
"""
        )
        config = ToolguardConfig.load_from_file(config_file)
        assert config.edits.max_edits == 10
        assert config.sandbox.default_timeout_ms == 1000
        assert config.sandbox.allowed_commands == ["ls", "git"]
        assert config.rate_limits.limits["run_command"] == (5, 30.0)
        assert config.git.extra_destructive_rules == {"worktree remove": [["--force"]]}

    def test_load_from_empty_file(self, tmp_path: Path):
        config_file = tmp_path / "empty.yml"
        config_file.write_text("")
        assert ToolguardConfig.load_from_file(config_file) == ToolguardConfig()

    def test_load_from_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            ToolguardConfig.load_from_file(tmp_path / "nope.yml")

    def test_load_from_repo_without_config(self, tmp_path: Path):
        assert ToolguardConfig.load_from_repo(tmp_path) == ToolguardConfig()

    def test_load_from_repo(self, tmp_path: Path):
        (tmp_path / ".toolguard.yml").write_text("telemetry:\n  enabled: false\n")
        assert ToolguardConfig.load_from_repo(tmp_path).telemetry.enabled is False


class TestEnvOverrides:
    """Tests for environment variable overrides."""

    def test_overrides(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("TOOLGUARD_LEGACY_READ_POLICY", "soft_warn")
        monkeypatch.setenv("TOOLGUARD_MAX_EDITS", "7")
        monkeypatch.setenv("TOOLGUARD_SANDBOX_TIMEOUT_MS", "500")
        monkeypatch.setenv("TOOLGUARD_SANDBOX_EXTRA_COMMANDS", "jq, ls ,")
        monkeypatch.setenv("TOOLGUARD_DISABLE_RATE_LIMITS", "1")
        monkeypatch.setenv("TOOLGUARD_APPROVAL_WEBHOOK_URL", "https://approvals.example.com/hook")
        monkeypatch.setenv("TOOLGUARD_TELEMETRY_DISABLED", "1")

        config = load_config(tmp_path)

        assert config.read_tracking.legacy_read_policy == "soft_warn"
        assert config.edits.max_edits == 7
        assert config.sandbox.default_timeout_ms == 500
        assert "jq" in config.sandbox.allowed_commands
        assert config.sandbox.allowed_commands.count("ls") == 1
        assert config.rate_limits.enabled is False
        assert config.approval.webhook.url == "https://approvals.example.com/hook"
        assert config.telemetry.enabled is False

    def test_invalid_policy_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("TOOLGUARD_LEGACY_READ_POLICY", "whatever")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_telemetry_path_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("TOOLGUARD_TELEMETRY_PATH", "logs/events.jsonl")
        assert load_config(tmp_path).telemetry.log_path == "logs/events.jsonl"

    def test_no_overrides(self, tmp_path: Path):
        config = load_config(tmp_path)
        assert config.telemetry == TelemetryConfig()
