"""Unit tests for status/metrics derived from telemetry."""

from __future__ import annotations

import json
import time
from pathlib import Path

from toolguard.status import StatusWindow, compute_status


def _write_events(path: Path, events: list[dict]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        for e in events:
            f.write(json.dumps(e) + "\n")


def test_compute_status_basic(tmp_path: Path) -> None:
    telemetry = tmp_path / "telemetry.jsonl"
    now = time.time()

    events = [
        {"timestamp": now - 10, "run_id": "a", "type": "tool_called", "data": {"tool": "edit_file"}},
        {"timestamp": now - 9, "run_id": "a", "type": "edit_applied", "data": {"strategies": ["exact"]}},
        {"timestamp": now - 8, "run_id": "a", "type": "tool_called", "data": {"tool": "multi_edit_file"}},
        {
            "timestamp": now - 7,
            "run_id": "a",
            "type": "edit_applied",
            "data": {"strategies": ["exact", "line_trimmed"]},
        },
        {"timestamp": now - 6, "run_id": "a", "type": "tool_called", "data": {"tool": "run_command"}},
        {"timestamp": now - 5, "run_id": "a", "type": "command_executed", "data": {"duration_s": 0.5}},
    ]
    _write_events(telemetry, events)

    st = compute_status(telemetry, window=StatusWindow(seconds=60))
    assert st["telemetry_path"] == str(telemetry)
    assert st["tool_calls_per_hour"] > 0
    assert st["edit_success_rate"] == 1.0
    assert st["edit_strategies"] == {"exact": 2, "line_trimmed": 1}
    assert st["commands_executed"] == 1
    assert st["command_duration_s_p95"] == 0.5
    assert st["last_failure"] is None


def test_compute_status_failures(tmp_path: Path) -> None:
    telemetry = tmp_path / "telemetry.jsonl"
    now = time.time()

    events = [
        {"timestamp": now - 10, "run_id": "a", "type": "edit_applied", "data": {"strategies": ["exact"]}},
        {"timestamp": now - 9, "run_id": "a", "type": "tool_failed", "data": {"tool": "edit_file", "code": "NoMatch"}},
        {"timestamp": now - 8, "run_id": "b", "type": "command_refused", "data": {"code": "DestructiveRefused"}},
        {"timestamp": now - 7, "run_id": "b", "type": "command_refused", "data": {"code": "Disallowed"}},
        {"timestamp": now - 6, "run_id": "b", "type": "command_timed_out", "data": {"timeout_s": 1.0}},
        {"timestamp": now - 5, "run_id": "b", "type": "security_violation", "data": {"code": "PathTraversal"}},
        {"timestamp": now - 4, "run_id": "b", "type": "tool_failed", "data": {"tool": "read_file", "code": "PathTraversal"}},
        {"timestamp": now - 3, "run_id": "b", "type": "integrity_error", "data": {}},
        {"timestamp": now - 2, "run_id": "b", "type": "internal_error", "data": {}},
    ]
    _write_events(telemetry, events)

    st = compute_status(telemetry, window=StatusWindow(seconds=60))
    assert st["edit_success_rate"] == 0.5
    assert st["commands_refused"] == {"DestructiveRefused": 1, "Disallowed": 1}
    assert st["commands_timed_out"] == 1
    assert st["security_violations"] == {"PathTraversal": 1}
    assert st["integrity_errors"] == 1
    assert st["internal_errors"] == 1
    assert st["last_failure"]["run_id"] == "b"
    assert st["last_failure"]["data"]["tool"] == "read_file"


def test_compute_status_ignores_old_events(tmp_path: Path) -> None:
    telemetry = tmp_path / "telemetry.jsonl"
    now = time.time()
    _write_events(
        telemetry,
        [{"timestamp": now - 7200, "run_id": "a", "type": "tool_called", "data": {}}],
    )

    st = compute_status(telemetry, window=StatusWindow(seconds=60))
    assert st["tool_calls_per_hour"] == 0.0
    assert st["edit_success_rate"] is None
    assert st["command_duration_s_p95"] is None


def test_compute_status_missing_file(tmp_path: Path) -> None:
    st = compute_status(tmp_path / "missing.jsonl")
    assert st["window_seconds"] == 3600.0
    assert st["commands_executed"] == 0


def test_compute_status_skips_malformed_lines(tmp_path: Path) -> None:
    telemetry = tmp_path / "telemetry.jsonl"
    telemetry.write_text(
        "not json\n\n" + json.dumps({"timestamp": time.time(), "run_id": "a", "type": "tool_called", "data": {}}) + "\n"
    )
    st = compute_status(telemetry, window=StatusWindow(seconds=3600))
    assert st["tool_calls_per_hour"] == 1.0
