"""Per-session state: the project root and read-before-write evidence.

A session may only edit files whose current content it has observed. Evidence
is a SHA-256 hash of the content at read time, so a file changed behind the
session's back (by another session, an editor, or a command) is no longer
considered read.
"""

from __future__ import annotations

import hashlib
import os
import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from toolguard.types import FileReadRecord


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class SessionContext:
    """Read-tracking context for one agent session."""

    def __init__(self, project_root: Path | str, session_id: str | None = None):
        root = Path(os.path.realpath(str(project_root)))
        if not root.is_dir():
            raise NotADirectoryError(f"Project root is not a directory: {project_root}")
        self._project_root = root
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._records: dict[str, FileReadRecord] = {}
        self._lock = threading.RLock()

    @property
    def project_root(self) -> Path:
        return self._project_root

    @contextmanager
    def mutation(self) -> Iterator[None]:
        """Serialize mutating operations within this session."""
        with self._lock:
            yield

    def _record(self, path: Path, data: bytes) -> FileReadRecord:
        try:
            st = os.stat(path)
            mtime_ns = st.st_mtime_ns
        except FileNotFoundError:
            mtime_ns = 0
        record = FileReadRecord(
            path=str(path),
            sha256=sha256_bytes(data),
            size=len(data),
            mtime_ns=mtime_ns,
            observed_at=time.time(),
        )
        with self._lock:
            self._records[str(path)] = record
        return record

    def mark_read(self, path: Path | str, content: bytes | str | None = None) -> FileReadRecord:
        """Record that the session has seen ``path``.

        ``content`` is what the session was shown; when omitted the file is
        read from disk.
        """
        path = Path(path)
        if content is None:
            data = path.read_bytes()
        elif isinstance(content, str):
            data = content.encode("utf-8")
        else:
            data = content
        return self._record(path, data)

    def mark_written(self, path: Path | str, data: bytes) -> FileReadRecord:
        """A session's own write counts as having read the result."""
        return self._record(Path(path), data)

    def forget(self, path: Path | str) -> None:
        with self._lock:
            self._records.pop(str(path), None)

    def record_for(self, path: Path | str) -> FileReadRecord | None:
        with self._lock:
            return self._records.get(str(path))

    def was_read(self, path: Path | str) -> bool:
        """True if ``path`` was read and its content still matches what was seen."""
        record = self.record_for(path)
        if record is None:
            return False
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return False
        if st.st_size != record.size:
            return False
        try:
            data = Path(path).read_bytes()
        except OSError:
            return False
        return sha256_bytes(data) == record.sha256

    def matches_read(self, path: Path | str, data: bytes) -> bool:
        """True if ``data`` is exactly what the session last saw at ``path``."""
        record = self.record_for(path)
        return record is not None and sha256_bytes(data) == record.sha256

    def tracked_paths(self) -> list[str]:
        with self._lock:
            return sorted(self._records)
