"""Telemetry logging for toolguard.

Events are appended to a JSONL file; this is the project's only log sink.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_TELEMETRY_PATH = ".toolguard/telemetry.jsonl"

_WRITE_LOCK = threading.Lock()


@dataclass(frozen=True)
class TelemetrySink:
    """Thin wrapper around JSONL telemetry.

    Event schema:
      {"timestamp": <float>, "run_id": <str>, "type": <str>, "data": <object>}

    Event types:
        - tool_called / tool_succeeded / tool_failed: dispatch boundary
        - security_violation: path or argument rejected by validation
        - edit_applied / batch_failed / integrity_error: edit engine outcomes
        - command_executed / command_refused / command_timed_out: sandbox
        - read_before_write_skipped: legacy soft_warn policy let an edit through
        - internal_error: unexpected exception converted to a generic message
    """

    enabled: bool
    path: Path

    def log(self, run_id: str, event_type: str, data: dict[str, Any]) -> None:
        if not self.enabled:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        entry = {
            "timestamp": time.time(),
            "run_id": run_id,
            "type": event_type,
            "data": data,
        }

        line = json.dumps(entry, ensure_ascii=False, default=str) + "\n"
        with _WRITE_LOCK:
            with open(self.path, "a") as f:
                f.write(line)


def disabled_sink() -> TelemetrySink:
    return TelemetrySink(enabled=False, path=Path(DEFAULT_TELEMETRY_PATH))


def read_events(telemetry_path: Path) -> list[dict[str, Any]]:
    """Load all well-formed events from a telemetry file."""
    events: list[dict[str, Any]] = []
    if not telemetry_path.exists():
        return events
    with open(telemetry_path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return events


def prune_telemetry_file(telemetry_path: Path, retention_days: int) -> None:
    """Delete telemetry file if it is older than retention_days (mtime-based)."""
    if retention_days <= 0:
        return
    try:
        if not telemetry_path.exists():
            return
        cutoff = time.time() - (retention_days * 86400)
        if telemetry_path.stat().st_mtime < cutoff:
            telemetry_path.unlink(missing_ok=True)
    except OSError:
        # Best-effort; telemetry should never crash a tool call.
        return
