"""Project-boundary validation for caller-supplied paths.

Two checks run in order: a lexical one (``..`` and absolute paths may not
leave the root) and a canonical one (symlinks resolved at every component must
still land inside the canonical root). Paths that do not exist yet are checked
through their deepest existing ancestor.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from toolguard.errors import DisallowedError, PathTraversalError, SymlinkEscapeError

FORBIDDEN_COMPONENTS = frozenset({".git"})


def is_within(path: str, root: str) -> bool:
    """True if ``path`` equals ``root`` or lies below it (both absolute, normalized)."""
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def _canonicalize(path: str) -> str:
    """Resolve symlinks in every existing component of ``path``.

    The deepest ancestor that exists (a dangling symlink counts) is resolved
    with realpath and the unresolved tail is re-appended.
    """
    existing = path
    tail: list[str] = []
    while not os.path.lexists(existing):
        parent, name = os.path.split(existing)
        if parent == existing:
            break
        tail.append(name)
        existing = parent
    # strict=True surfaces symlink loops as OSError instead of a silent partial result
    try:
        resolved = os.path.realpath(existing, strict=True)
    except FileNotFoundError:
        # Dangling link: resolve as far as possible without requiring the target.
        resolved = os.path.realpath(existing)
    return os.path.join(resolved, *reversed(tail)) if tail else resolved


def validate_path(
    raw_path: str,
    project_root: Path | str,
    forbidden_components: Iterable[str] = FORBIDDEN_COMPONENTS,
) -> Path:
    """Return the canonical absolute path for ``raw_path`` inside ``project_root``.

    Raises:
        PathTraversalError: NUL byte, or the lexically normalized path leaves the root
        SymlinkEscapeError: a symlink resolves outside the root, or a link loop
        DisallowedError: the path addresses a forbidden component such as ``.git``
    """
    if "\x00" in raw_path:
        raise PathTraversalError(f"Path contains NUL byte: {raw_path!r}")

    root_abs = os.path.normpath(os.path.abspath(str(project_root)))
    try:
        root_real = os.path.realpath(root_abs, strict=True)
    except OSError as e:
        raise PathTraversalError(f"Project root is not accessible for path: {raw_path}") from e

    if os.path.isabs(raw_path):
        lexical = os.path.normpath(raw_path)
        if not (is_within(lexical, root_abs) or is_within(lexical, root_real)):
            raise PathTraversalError(f"Path escapes project boundary: {raw_path}")
    else:
        lexical = os.path.normpath(os.path.join(root_abs, raw_path))
        if not is_within(lexical, root_abs):
            raise PathTraversalError(f"Path escapes project boundary: {raw_path}")

    try:
        canonical = _canonicalize(lexical)
    except (OSError, RuntimeError) as e:
        raise SymlinkEscapeError(f"Symlink cannot be resolved safely: {raw_path}") from e

    if not is_within(canonical, root_real):
        raise SymlinkEscapeError(f"Symlink escapes project boundary: {raw_path}")

    relative = os.path.relpath(canonical, root_real)
    forbidden = set(forbidden_components)
    if relative != "." and any(part in forbidden for part in Path(relative).parts):
        raise DisallowedError(f"Path addresses a protected location: {raw_path}")

    return Path(canonical)


def validate_paths(
    raw_paths: Iterable[str],
    project_root: Path | str,
    forbidden_components: Iterable[str] = FORBIDDEN_COMPONENTS,
) -> list[Path]:
    forbidden = frozenset(forbidden_components)
    return [validate_path(p, project_root, forbidden) for p in raw_paths]


class PathValidator:
    """Validator bound to one project root and forbidden-component policy."""

    def __init__(self, project_root: Path | str, forbidden_components: Iterable[str] = FORBIDDEN_COMPONENTS):
        self.project_root = Path(os.path.realpath(str(project_root)))
        self.forbidden_components = frozenset(forbidden_components)

    def validate(self, raw_path: str) -> Path:
        return validate_path(raw_path, self.project_root, self.forbidden_components)

    def relative(self, canonical: Path) -> str:
        """Display form of a validated path, relative to the root."""
        return os.path.relpath(str(canonical), str(self.project_root))
