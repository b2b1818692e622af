from __future__ import annotations

import re
from pathlib import Path

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Common API key shapes (best-effort).
    (re.compile(r"\bsk-[A-Za-z0-9]{16,}\b"), "sk-REDACTED"),
    (re.compile(r"\bAKIA[0-9A-Z]{16}\b"), "AKIA_REDACTED"),
    (re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", re.S), "PRIVATE_KEY_REDACTED"),
    (re.compile(r"\bghp_[A-Za-z0-9]{20,}\b"), "ghp_REDACTED"),
    (re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}\b"), "github_pat_REDACTED"),
    (re.compile(r"\bxox[abprs]-[A-Za-z0-9-]{10,}\b"), "xox-REDACTED"),
    (re.compile(r"(?i)\b(authorization:\s*bearer)\s+[A-Za-z0-9._~+/=-]+"), r"\1 REDACTED"),
]

PROJECT_PLACEHOLDER = "<project>"


def redact_text(s: str, *, max_len: int = 400) -> str:
    """Redact common secret patterns and truncate.

    Telemetry should never capture full command output or file content; callers
    pass short excerpts (error messages, argv) through here first.
    """
    if not s:
        return ""
    out = s
    for pat, repl in _PATTERNS:
        out = pat.sub(repl, out)
    out = out.strip()
    if len(out) > max_len:
        out = out[:max_len] + "...(truncated)"
    return out


def scrub_paths(s: str, project_root: Path | str | None) -> str:
    """Replace occurrences of the project root with a placeholder."""
    if not s or project_root is None:
        return s
    root = str(project_root).rstrip("/")
    if not root:
        return s
    return s.replace(root, PROJECT_PLACEHOLDER)
