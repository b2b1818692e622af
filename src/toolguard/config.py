"""Configuration schema for toolguard.

Configuration is loaded from .toolguard.yml in the project root.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_ALLOWED_COMMANDS = [
    "git",
    "mix", "elixir",
    "npm", "npx", "yarn", "pnpm", "node",
    "cargo", "rustc",
    "go",
    "python", "python3", "pip", "pip3", "pytest", "ruff", "mypy",
    "ls", "cat", "head", "tail", "grep", "find", "wc", "diff", "sort", "uniq",
    "test", "true", "false", "echo", "printf", "pwd",
    "mkdir", "rmdir", "cp", "mv", "touch", "rm",
    "date", "sleep",
    "make", "cmake",
]

SHELL_INTERPRETERS = ["bash", "sh", "zsh", "fish", "dash", "ksh", "csh", "tcsh", "ash"]


class PathPolicyConfig(BaseModel):
    """Project boundary policy."""

    # Components that may never be addressed directly, even inside the root.
    forbidden_components: list[str] = Field(default_factory=lambda: [".git", ".toolguard"])


class EditConfig(BaseModel):
    """Caps applied to edit requests before any matching begins."""

    max_edits: int = 50
    max_string_length: int = 100_000
    max_file_bytes: int = 10 * 1024 * 1024

    @field_validator("max_edits", "max_string_length", "max_file_bytes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Edit caps must be positive")
        return v


class WriteConfig(BaseModel):
    """Atomic write behavior."""

    default_file_mode: int = 0o644

    @field_validator("default_file_mode")
    @classmethod
    def validate_mode(cls, v: int) -> int:
        if not 0 <= v <= 0o777:
            raise ValueError(f"Invalid file mode: {oct(v)}")
        return v


class ReadTrackingConfig(BaseModel):
    """Read-before-write enforcement."""

    # What to do when an edit arrives with no session context at all.
    legacy_read_policy: str = "hard_fail"

    @field_validator("legacy_read_policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"hard_fail", "soft_warn"}:
            raise ValueError("legacy_read_policy must be 'hard_fail' or 'soft_warn'")
        return v


class SandboxConfig(BaseModel):
    """Command sandbox configuration."""

    allowed_commands: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_COMMANDS))
    blocked_interpreters: list[str] = Field(default_factory=lambda: list(SHELL_INTERPRETERS))
    # Variables copied from the parent environment; everything else is dropped.
    env_allowlist: list[str] = Field(default_factory=lambda: ["PATH", "LANG", "LC_ALL", "TZ"])
    default_timeout_ms: int = 25_000
    max_timeout_ms: int = 300_000
    max_output_bytes: int = 1_048_576
    max_workers: int = 4

    @field_validator("max_workers", "default_timeout_ms", "max_timeout_ms", "max_output_bytes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Sandbox limits must be positive")
        return v

    def is_command_allowed(self, command: str) -> bool:
        """True if the executable is allowlisted and not a shell interpreter."""
        if command in self.blocked_interpreters:
            return False
        return command in self.allowed_commands


class GitConfig(BaseModel):
    """Git classification extensions."""

    # Extra destructive rules: subcommand (or "subcommand action") -> flag sets.
    extra_destructive_rules: dict[str, list[list[str]]] = Field(default_factory=dict)


class RateLimitConfig(BaseModel):
    """Per-session, per-tool sliding window limits: tool -> [limit, window_seconds]."""

    enabled: bool = True
    limits: dict[str, tuple[int, float]] = Field(
        default_factory=lambda: {
            "run_command": (60, 60.0),
            "git_command": (60, 60.0),
        }
    )


class WebhookApprovalConfig(BaseModel):
    """Synchronous webhook approval configuration."""

    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: int = 300


class ApprovalConfig(BaseModel):
    """Approval configuration for destructive commands (CLI interactive and/or webhook)."""

    webhook: WebhookApprovalConfig = Field(default_factory=WebhookApprovalConfig)


class TelemetryConfig(BaseModel):
    """Telemetry and logging configuration."""

    enabled: bool = True
    log_path: str = ".toolguard/telemetry.jsonl"
    retention_days: int = 30


class ToolguardConfig(BaseModel):
    """Complete toolguard configuration."""

    paths: PathPolicyConfig = Field(default_factory=PathPolicyConfig)
    edits: EditConfig = Field(default_factory=EditConfig)
    writes: WriteConfig = Field(default_factory=WriteConfig)
    read_tracking: ReadTrackingConfig = Field(default_factory=ReadTrackingConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @classmethod
    def load_from_file(cls, config_path: Path | str) -> ToolguardConfig:
        """Load configuration from YAML file."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f)

        return cls(**(data or {}))

    @classmethod
    def load_from_repo(cls, repo_path: Path | str) -> ToolguardConfig:
        """Load configuration from the project's .toolguard.yml."""
        repo_path = Path(repo_path)
        config_path = repo_path / ".toolguard.yml"

        if not config_path.exists():
            return cls()

        return cls.load_from_file(config_path)

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        # Read tracking
        if policy := os.getenv("TOOLGUARD_LEGACY_READ_POLICY"):
            self.read_tracking.legacy_read_policy = ReadTrackingConfig.validate_policy(policy)

        # Edit caps
        if v := os.getenv("TOOLGUARD_MAX_EDITS"):
            self.edits.max_edits = int(v)
        if v := os.getenv("TOOLGUARD_MAX_STRING_LENGTH"):
            self.edits.max_string_length = int(v)

        # Sandbox overrides
        if v := os.getenv("TOOLGUARD_SANDBOX_TIMEOUT_MS"):
            self.sandbox.default_timeout_ms = int(v)
        if v := os.getenv("TOOLGUARD_SANDBOX_MAX_WORKERS"):
            self.sandbox.max_workers = int(v)
        if v := os.getenv("TOOLGUARD_SANDBOX_EXTRA_COMMANDS"):
            for cmd in v.split(","):
                cmd = cmd.strip()
                if cmd and cmd not in self.sandbox.allowed_commands:
                    self.sandbox.allowed_commands.append(cmd)

        # Rate limits
        if os.getenv("TOOLGUARD_DISABLE_RATE_LIMITS") == "1":
            self.rate_limits.enabled = False

        # Approval overrides
        if webhook_url := os.getenv("TOOLGUARD_APPROVAL_WEBHOOK_URL"):
            self.approval.webhook.url = webhook_url
        if webhook_timeout := os.getenv("TOOLGUARD_APPROVAL_WEBHOOK_TIMEOUT_SECONDS"):
            self.approval.webhook.timeout_seconds = int(webhook_timeout)

        # Telemetry overrides
        if log_path := os.getenv("TOOLGUARD_TELEMETRY_PATH"):
            self.telemetry.log_path = log_path
        if os.getenv("TOOLGUARD_TELEMETRY_DISABLED") == "1":
            self.telemetry.enabled = False


def load_config(repo_path: Path | str) -> ToolguardConfig:
    """
    Load configuration for a project.

    Args:
        repo_path: Path to the project root

    Returns:
        Loaded and validated configuration
    """
    config = ToolguardConfig.load_from_repo(repo_path)
    config.apply_env_overrides()
    return config
