from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .core.telemetry import read_events


@dataclass(frozen=True)
class StatusWindow:
    seconds: float


def compute_status(telemetry_path: Path, *, window: StatusWindow | None = None) -> dict[str, Any]:
    """Compute basic ops metrics from telemetry.jsonl (best-effort)."""
    window = window or StatusWindow(seconds=3600.0)
    now = time.time()
    cutoff = now - float(window.seconds)

    events = read_events(telemetry_path)
    recent = [e for e in events if float(e.get("timestamp", 0.0) or 0.0) >= cutoff]

    def _of(event_type: str) -> list[dict[str, Any]]:
        return [e for e in recent if e.get("type") == event_type]

    calls = _of("tool_called")
    edits_ok = _of("edit_applied")
    edits_failed = [
        e
        for e in _of("tool_failed")
        if (e.get("data") or {}).get("tool") in {"edit_file", "multi_edit_file"}
    ]
    executed = _of("command_executed")
    refused = _of("command_refused")
    timed_out = _of("command_timed_out")
    violations = _of("security_violation")

    strategy_counts: Counter[str] = Counter()
    for e in edits_ok:
        for strategy in (e.get("data") or {}).get("strategies", []):
            strategy_counts[strategy] += 1

    refusal_codes = Counter(str((e.get("data") or {}).get("code", "unknown")) for e in refused)
    violation_codes = Counter(str((e.get("data") or {}).get("code", "unknown")) for e in violations)

    durations = [float((e.get("data") or {}).get("duration_s", 0.0) or 0.0) for e in executed]

    def _p(values: list[float], pct: float) -> float | None:
        if not values:
            return None
        s = sorted(values)
        idx = int(round((pct / 100.0) * (len(s) - 1)))
        return float(s[max(0, min(len(s) - 1, idx))])

    def _rate(ok_count: int, fail_count: int) -> float | None:
        denom = ok_count + fail_count
        return (ok_count / denom) if denom else None

    last_failure = next((e for e in reversed(events) if e.get("type") == "tool_failed"), None)

    return {
        "window_seconds": window.seconds,
        "telemetry_path": str(telemetry_path),
        "tool_calls_per_hour": (len(calls) / (window.seconds / 3600.0)) if window.seconds else 0.0,
        "edit_success_rate": _rate(len(edits_ok), len(edits_failed)),
        "edit_strategies": dict(strategy_counts),
        "commands_executed": len(executed),
        "commands_refused": dict(refusal_codes),
        "commands_timed_out": len(timed_out),
        "command_duration_s_p95": _p(durations, 95.0),
        "security_violations": dict(violation_codes),
        "integrity_errors": len(_of("integrity_error")),
        "internal_errors": len(_of("internal_error")),
        "last_failure": last_failure,
    }
