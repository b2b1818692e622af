"""Core data types for the toolguard sandbox."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class EditRequest:
    """One string replacement requested against a file."""

    old_string: str
    new_string: str
    replace_all: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EditRequest:
        return cls(
            old_string=data["old_string"],
            new_string=data["new_string"],
            replace_all=bool(data.get("replace_all", False)),
        )


@dataclass(frozen=True)
class MatchResult:
    """Location of a match.

    ``start`` and ``length`` are measured in grapheme clusters; ``span`` holds
    the code-point offsets used to splice the Python string.
    """

    strategy: str
    start: int
    length: int
    span: tuple[int, int]


@dataclass
class EditOutcome:
    """Result of applying one or more edits to an in-memory buffer."""

    content: str
    replacements: int
    strategies: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FileReadRecord:
    """Evidence that a session observed a file's content."""

    path: str
    sha256: str
    size: int
    mtime_ns: int
    observed_at: float


class SafetyLevel(str, Enum):
    """Git command safety classification."""

    READ_ONLY = "read_only"
    MODIFYING = "modifying"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class GitArgSpec:
    """Canonicalized view of a git invocation.

    ``canonical_flags`` is independent of flag order, ``=`` syntax and short
    option clustering.
    """

    subcommand: str
    canonical_flags: frozenset[str]
    positional_args: tuple[str, ...]
    flag_values: tuple[tuple[str, str], ...] = ()
    pathspecs: tuple[str, ...] = ()

    @property
    def action(self) -> str | None:
        """First positional argument (e.g. ``drop`` for ``git stash drop``)."""
        return self.positional_args[0] if self.positional_args else None

    @property
    def rule_keys(self) -> tuple[str, ...]:
        """Keys a rule table is consulted with: ``stash`` and ``stash drop``."""
        if self.action:
            return (self.subcommand, f"{self.subcommand} {self.action}")
        return (self.subcommand,)


@dataclass(frozen=True)
class DestructiveRule:
    """A subcommand is destructive when its flags include all ``required_flags``."""

    subcommand: str
    required_flags: frozenset[str]

    def matches(self, spec: GitArgSpec) -> bool:
        return self.subcommand in spec.rule_keys and self.required_flags <= spec.canonical_flags


@dataclass(frozen=True)
class ApprovalRequest:
    """A destructive command awaiting a human (or webhook) decision."""

    subcommand: str
    args: tuple[str, ...]
    reason: str
    session_id: str = ""

    @property
    def command_line(self) -> str:
        return " ".join(["git", self.subcommand, *self.args])

    def to_dict(self) -> dict[str, Any]:
        return {
            "subcommand": self.subcommand,
            "args": list(self.args),
            "command": self.command_line,
            "reason": self.reason,
            "session_id": self.session_id,
        }
