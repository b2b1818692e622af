"""Crash-safe file replacement.

Data goes to a sibling temp file which is fsynced and renamed over the
destination, so readers observe either the old content or the new content.
"""

from __future__ import annotations

import os
import secrets
import stat
from pathlib import Path

from toolguard.errors import IntegrityError

DEFAULT_FILE_MODE = 0o644

_OPEN_FLAGS = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_NOFOLLOW", 0) | getattr(os, "O_CLOEXEC", 0)


def temp_path_for(path: Path) -> Path:
    return path.with_name(f".{path.name}.{secrets.token_hex(8)}.tmp")


def write_atomic(
    path: Path,
    data: bytes,
    perms: int | None = None,
    default_mode: int = DEFAULT_FILE_MODE,
) -> int:
    """Atomically replace ``path`` with ``data`` and return the bytes written.

    Permissions are ``perms`` if given, else the existing file's mode, else
    ``default_mode``. On any failure before the rename the temp file is removed
    and the destination is left untouched.
    """
    path = Path(path)
    if perms is None:
        try:
            perms = stat.S_IMODE(os.stat(path).st_mode)
        except FileNotFoundError:
            perms = default_mode

    tmp = temp_path_for(path)
    try:
        fd = os.open(tmp, _OPEN_FLAGS, 0o600)
        try:
            view = memoryview(data)
            while view:
                written = os.write(fd, view)
                view = view[written:]
            os.fsync(fd)
        finally:
            os.close(fd)
        os.chmod(tmp, perms)
        os.replace(tmp, path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise IntegrityError(f"Failed to write {path.name}: {e.strerror or e.__class__.__name__}") from e

    _fsync_dir(path.parent)

    size = os.stat(path).st_size
    if size != len(data):
        raise IntegrityError(f"Size mismatch after writing {path.name}: expected {len(data)}, found {size}")
    return len(data)


def _fsync_dir(directory: Path) -> None:
    # Persist the rename itself; not every platform allows opening directories.
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)
