"""Workspace for validated file operations and sandboxed commands.

Manages filesystem operations with safety guarantees:
- All paths validated via validate_path() against the session's project root
- Existing files must be read by the session before they are overwritten or edited
- All writes go through write_atomic(); a multi-edit batch writes at most once
- All commands run through the CommandSandbox
- Mutations within a session are serialized by the session's mutation lock
"""

from __future__ import annotations

import json
import os
import stat as stat_module
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import ToolguardConfig
from .core.atomic_write import write_atomic
from .core.edits import EditLimits, apply_edit, apply_edits
from .core.redaction import redact_text, scrub_paths
from .core.safe_paths import validate_path
from .core.sandbox import CommandSandbox
from .core.telemetry import TelemetrySink
from .errors import (
    BatchFailedError,
    CapExceededError,
    DisallowedError,
    IntegrityError,
    NotFoundError,
    NotTextError,
    ReadBeforeWriteRequiredError,
    SymlinkEscapeError,
    TimedOutError,
    ToolguardError,
)
from .session import SessionContext
from .types import EditOutcome, EditRequest

LEGACY_RUN_ID = "legacy"


def decode_text(data: bytes, path: str) -> str:
    """Decode UTF-8 text, rejecting NUL bytes and invalid sequences."""
    if b"\x00" in data:
        raise NotTextError(f"File appears to be binary: {path}")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise NotTextError(f"File is not valid UTF-8 text: {path}") from e


def _os_error(e: OSError, path: str) -> ToolguardError:
    if isinstance(e, FileNotFoundError):
        return NotFoundError(f"File not found: {path}")
    if isinstance(e, IsADirectoryError):
        return DisallowedError(f"Is a directory: {path}")
    if isinstance(e, NotADirectoryError):
        return NotFoundError(f"Not a directory: {path}")
    if isinstance(e, PermissionError):
        return DisallowedError(f"Permission denied: {path}")
    return IntegrityError(f"File error ({e.strerror or e.__class__.__name__}): {path}")


class Workspace:
    """
    File and command operations for one session.

    Without a ``SessionContext`` the workspace runs in legacy mode: reads are
    not tracked and ``read_tracking.legacy_read_policy`` decides whether edits
    to existing files are refused or let through with a warning.
    """

    def __init__(
        self,
        project_root: Path | str | None = None,
        session: SessionContext | None = None,
        config: ToolguardConfig | None = None,
        sandbox: CommandSandbox | None = None,
        telemetry: TelemetrySink | None = None,
    ):
        if session is None and project_root is None:
            raise ValueError("Workspace requires a project_root or a session")
        self.session = session
        self.project_root = session.project_root if session else Path(os.path.realpath(str(project_root)))
        self.config = config or ToolguardConfig()
        self.forbidden_components = frozenset(self.config.paths.forbidden_components)
        self.limits = EditLimits(
            max_edits=self.config.edits.max_edits,
            max_string_length=self.config.edits.max_string_length,
        )
        self.sandbox = sandbox or CommandSandbox(
            self.config.sandbox,
            git_rules=self.config.git.extra_destructive_rules,
            forbidden_components=self.forbidden_components,
        )
        self.telemetry = telemetry or TelemetrySink(
            enabled=self.config.telemetry.enabled,
            path=self.project_root / self.config.telemetry.log_path,
        )
        self._legacy_lock = threading.RLock()

    @property
    def run_id(self) -> str:
        return self.session.session_id if self.session else LEGACY_RUN_ID

    def log(self, event_type: str, data: dict[str, Any]) -> None:
        self.telemetry.log(self.run_id, event_type, data)

    def scrub(self, text: str) -> str:
        return redact_text(scrub_paths(text, self.project_root))

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        if self.session is not None:
            with self.session.mutation():
                yield
        else:
            with self._legacy_lock:
                yield

    def resolve(self, path: str) -> Path:
        return validate_path(path, self.project_root, self.forbidden_components)

    # Read tracking

    def _require_read(self, canonical: Path, path: str, tool: str, data: bytes | None = None) -> str:
        """Enforce read-before-write; returns a warning suffix in soft_warn legacy mode.

        When ``data`` is given it is the content about to be modified and is
        compared against the recorded read instead of reading the file again.
        """
        if self.session is None:
            if self.config.read_tracking.legacy_read_policy == "soft_warn":
                self.log("read_before_write_skipped", {"tool": tool, "path": self.scrub(path)})
                return " (warning: no session context, read-before-write was not verified)"
            raise ReadBeforeWriteRequiredError(
                f"File must be read before it is modified: {path} (no session context to record reads)"
            )

        fresh = self.session.was_read(canonical) if data is None else self.session.matches_read(canonical, data)
        if fresh:
            return ""
        if self.session.record_for(canonical) is not None:
            raise ReadBeforeWriteRequiredError(
                f"File has changed since it was last read: {path}. Read it again before modifying it."
            )
        raise ReadBeforeWriteRequiredError(f"File must be read before it is modified: {path}")

    def _read_bytes(self, canonical: Path, path: str) -> bytes:
        try:
            st = os.stat(canonical)
        except OSError as e:
            raise _os_error(e, path) from e
        if stat_module.S_ISDIR(st.st_mode):
            raise DisallowedError(f"Is a directory: {path}")
        if st.st_size > self.config.edits.max_file_bytes:
            raise CapExceededError(
                f"File is {st.st_size} bytes; the limit is {self.config.edits.max_file_bytes}: {path}"
            )
        try:
            return canonical.read_bytes()
        except OSError as e:
            raise _os_error(e, path) from e

    def _commit(self, canonical: Path, path: str, data: bytes, tool: str) -> None:
        """Write ``data`` atomically after re-validating the destination."""
        if len(data) > self.config.edits.max_file_bytes:
            raise CapExceededError(
                f"Content is {len(data)} bytes; the limit is {self.config.edits.max_file_bytes}"
            )
        if self.resolve(path) != canonical:
            raise SymlinkEscapeError(f"Path changed during operation: {path}")
        try:
            write_atomic(canonical, data, default_mode=self.config.writes.default_file_mode)
        except IntegrityError as e:
            self.log("integrity_error", {"tool": tool, "path": self.scrub(path), "error": self.scrub(str(e))})
            raise
        if self.session is not None:
            self.session.mark_written(canonical, data)

    # File operations

    def read_file(self, path: str) -> str:
        """Return the file's text and record the read for this session."""
        canonical = self.resolve(path)
        data = self._read_bytes(canonical, path)
        text = decode_text(data, path)
        # A link swapped in while reading must not be recorded as read.
        if self.resolve(path) != canonical:
            raise SymlinkEscapeError(f"Path changed during operation: {path}")
        if self.session is not None:
            self.session.mark_read(canonical, data)
        return text

    def write_file(self, path: str, content: str) -> str:
        data = content.encode("utf-8")
        if len(data) > self.config.edits.max_file_bytes:
            raise CapExceededError(
                f"Content is {len(data)} bytes; the limit is {self.config.edits.max_file_bytes}"
            )
        with self._mutation():
            canonical = self.resolve(path)
            warning = ""
            existed = os.path.lexists(canonical)
            if existed:
                if canonical.is_dir():
                    raise DisallowedError(f"Is a directory: {path}")
                warning = self._require_read(canonical, path, "write_file")
            else:
                try:
                    canonical.parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise _os_error(e, path) from e
            self._commit(canonical, path, data, "write_file")
        status = "updated" if existed else "created"
        return f"File {status} successfully: {path}{warning}"

    def _load_for_edit(self, path: str, tool: str) -> tuple[Path, str, str]:
        canonical = self.resolve(path)
        if not os.path.lexists(canonical):
            raise NotFoundError(f"File not found: {path}")
        data = self._read_bytes(canonical, path)
        warning = self._require_read(canonical, path, tool, data)
        content = decode_text(data, path)
        return canonical, content, warning

    def edit_file(self, path: str, old_string: str, new_string: str, replace_all: bool = False) -> str:
        edit = EditRequest(old_string, new_string, replace_all)
        with self._mutation():
            canonical, content, warning = self._load_for_edit(path, "edit_file")
            outcome = apply_edit(content, edit, self.limits)
            self._commit(canonical, path, outcome.content.encode("utf-8"), "edit_file")
        self._log_edit("edit_file", path, outcome, 1)
        return f"Successfully replaced {outcome.replacements} occurrence(s) in {path}{self._strategy_note(outcome)}{warning}"

    def multi_edit_file(self, path: str, edits: Sequence[EditRequest | dict[str, Any]]) -> str:
        requests = [e if isinstance(e, EditRequest) else EditRequest.from_dict(e) for e in edits]
        with self._mutation():
            canonical, content, warning = self._load_for_edit(path, "multi_edit_file")
            try:
                outcome = apply_edits(content, requests, self.limits)
            except BatchFailedError as e:
                self.log(
                    "batch_failed",
                    {"path": self.scrub(path), "index": e.index, "code": e.inner.code, "edits": len(requests)},
                )
                raise
            self._commit(canonical, path, outcome.content.encode("utf-8"), "multi_edit_file")
        self._log_edit("multi_edit_file", path, outcome, len(requests))
        return (
            f"Successfully applied {len(requests)} edit(s) ({outcome.replacements} replacement(s)) "
            f"to {path}{self._strategy_note(outcome)}{warning}"
        )

    @staticmethod
    def _strategy_note(outcome: EditOutcome) -> str:
        fuzzy = sorted({s for s in outcome.strategies if s != "exact"})
        return f" (matched using {', '.join(fuzzy)})" if fuzzy else ""

    def _log_edit(self, tool: str, path: str, outcome: EditOutcome, edits: int) -> None:
        self.log(
            "edit_applied",
            {
                "tool": tool,
                "path": self.scrub(path),
                "edits": edits,
                "replacements": outcome.replacements,
                "strategies": outcome.strategies,
            },
        )

    def list_directory(self, path: str = ".", recursive: bool = False) -> str:
        """JSON list of ``{"name", "type"}`` entries, sorted by name."""
        canonical = self.resolve(path)
        if not canonical.exists():
            raise NotFoundError(f"Directory not found: {path}")
        if not canonical.is_dir():
            raise NotFoundError(f"Not a directory: {path}")
        try:
            entries = self._list_entries(canonical, canonical, recursive)
        except OSError as e:
            raise _os_error(e, path) from e
        return json.dumps(entries)

    def _list_entries(self, directory: Path, base: Path, recursive: bool) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        for entry in sorted(os.scandir(directory), key=lambda e: e.name):
            if entry.name in self.forbidden_components:
                continue
            name = os.path.relpath(entry.path, base)
            if entry.is_symlink():
                results.append({"name": name, "type": "symlink"})
            elif entry.is_dir(follow_symlinks=False):
                results.append({"name": name, "type": "directory"})
                if recursive:
                    try:
                        results.extend(self._list_entries(Path(entry.path), base, recursive))
                    except PermissionError:
                        results[-1]["error"] = "unreadable"
            else:
                results.append({"name": name, "type": "file"})
        return results

    def file_info(self, path: str) -> str:
        canonical = self.resolve(path)
        try:
            st = os.stat(canonical)
        except OSError as e:
            raise _os_error(e, path) from e
        if stat_module.S_ISDIR(st.st_mode):
            kind = "directory"
        elif stat_module.S_ISREG(st.st_mode):
            kind = "regular"
        else:
            kind = "other"
        readable = os.access(canonical, os.R_OK)
        writable = os.access(canonical, os.W_OK)
        access = {
            (True, True): "read_write",
            (True, False): "read",
            (False, True): "write",
            (False, False): "none",
        }[(readable, writable)]
        info = {
            "path": path,
            "size": st.st_size,
            "type": kind,
            "access": access,
            "mtime": datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        return json.dumps(info)

    def create_directory(self, path: str) -> str:
        with self._mutation():
            canonical = self.resolve(path)
            if canonical.exists() and not canonical.is_dir():
                raise DisallowedError(f"A file already exists at: {path}")
            try:
                canonical.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise _os_error(e, path) from e
        return f"Directory created successfully: {path}"

    def delete_file(self, path: str, confirm: bool = False) -> str:
        if confirm is not True:
            raise DisallowedError("delete_file requires confirm: true")
        with self._mutation():
            canonical = self.resolve(path)
            if canonical == self.project_root:
                raise DisallowedError("Refusing to delete the project root")
            if canonical.is_dir():
                raise DisallowedError(f"Is a directory: {path}")
            try:
                canonical.unlink()
            except OSError as e:
                raise _os_error(e, path) from e
            if self.session is not None:
                self.session.forget(canonical)
        return f"File deleted successfully: {path}"

    # Commands

    def _execute(
        self,
        tool: str,
        command: str,
        args: Sequence[str],
        timeout_ms: int | None,
        allow_destructive: bool,
    ) -> dict[str, Any]:
        timeout_s = timeout_ms / 1000 if timeout_ms else None
        argv_text = self.scrub(" ".join([command, *args]))
        try:
            with self._mutation():
                result = self.sandbox.execute(
                    command,
                    list(args),
                    self.project_root,
                    timeout_s=timeout_s,
                    allow_destructive=allow_destructive,
                )
        except TimedOutError as e:
            self.log("command_timed_out", {"tool": tool, "argv": argv_text, "timeout_s": e.timeout_s})
            raise
        except ToolguardError as e:
            self.log("command_refused", {"tool": tool, "argv": argv_text, "code": e.code})
            raise
        self.log(
            "command_executed",
            {
                "tool": tool,
                "argv": argv_text,
                "exit_code": result["exit_code"],
                "duration_s": result["duration_s"],
                "truncated": result["truncated"],
                "safety": result.get("safety"),
                "allow_destructive": allow_destructive,
            },
        )
        return result

    def run_command(self, command: str, args: Sequence[str] = (), timeout_ms: int | None = None) -> str:
        """Run an allowlisted command; git invocations are classified and never allowed to be destructive."""
        result = self._execute("run_command", command, args, timeout_ms, allow_destructive=False)
        return json.dumps(
            {
                "exit_code": result["exit_code"],
                "stdout": result["stdout"],
                "stderr": result["stderr"],
                "truncated": result["truncated"],
            }
        )

    def git_command(
        self,
        subcommand: str,
        args: Sequence[str] = (),
        allow_destructive: bool = False,
        timeout_ms: int | None = None,
    ) -> str:
        result = self._execute("git_command", "git", [subcommand, *args], timeout_ms, allow_destructive)
        return json.dumps(
            {
                "exit_code": result["exit_code"],
                "stdout": result["stdout"],
                "stderr": result["stderr"],
            }
        )
