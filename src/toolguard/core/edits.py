"""Apply edit requests to an in-memory buffer.

Nothing here touches the filesystem: callers read the file, run a single edit
or a whole batch through this module, and write the result once. A batch that
fails at any index produces no output at all.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from toolguard.core.matching import LINE_STRATEGIES, common_indent, find, leading_whitespace
from toolguard.errors import BatchFailedError, CapExceededError, NoOpEditError, ToolguardError
from toolguard.types import EditOutcome, EditRequest, MatchResult


@dataclass(frozen=True)
class EditLimits:
    max_edits: int = 50
    max_string_length: int = 100_000


DEFAULT_LIMITS = EditLimits()


def check_caps(edit: EditRequest, limits: EditLimits) -> None:
    for name in ("old_string", "new_string"):
        value = getattr(edit, name)
        if len(value) > limits.max_string_length:
            raise CapExceededError(
                f"{name} is {len(value)} characters; the limit is {limits.max_string_length}"
            )
    if edit.old_string == edit.new_string:
        raise NoOpEditError("old_string and new_string are identical")


def reindent(replacement: str, old_string: str, matched: str) -> str:
    """Shift ``replacement`` from ``old_string``'s indentation to ``matched``'s.

    When ``old_string`` and the matched text have the same number of lines,
    each replacement line takes the indentation of the matched line at the
    same position (plus any extra indentation it had relative to
    ``old_string``). Otherwise the block's common indentation is swapped.
    """
    old_lines = old_string.split("\n")
    matched_lines = matched.split("\n")
    new_lines = replacement.split("\n")

    old_base = common_indent(old_lines)
    matched_base = common_indent(matched_lines)
    per_line = len(old_lines) == len(matched_lines)

    out: list[str] = []
    for i, line in enumerate(new_lines):
        if not line.strip():
            out.append(line)
            continue
        indent = leading_whitespace(line)
        body = line[len(indent) :]
        if per_line and i < len(old_lines) and old_lines[i].strip():
            old_indent = leading_whitespace(old_lines[i])
            if indent.startswith(old_indent):
                out.append(leading_whitespace(matched_lines[i]) + indent[len(old_indent) :] + body)
                continue
        if indent.startswith(old_base):
            out.append(matched_base + indent[len(old_base) :] + body)
        else:
            out.append(line)
    return "\n".join(out)


def _splice(content: str, matches: list[MatchResult], edit: EditRequest) -> str:
    pieces: list[str] = []
    cursor = 0
    for match in matches:
        start, end = match.span
        replacement = edit.new_string
        if match.strategy in LINE_STRATEGIES:
            replacement = reindent(replacement, edit.old_string, content[start:end])
        pieces.append(content[cursor:start])
        pieces.append(replacement)
        cursor = end
    pieces.append(content[cursor:])
    return "".join(pieces)


def apply_edit(content: str, edit: EditRequest, limits: EditLimits = DEFAULT_LIMITS) -> EditOutcome:
    """Apply one edit. Errors are raised as-is (no batch wrapping)."""
    check_caps(edit, limits)
    matches = find(content, edit.old_string, edit.replace_all)
    return EditOutcome(
        content=_splice(content, matches, edit),
        replacements=len(matches),
        strategies=[matches[0].strategy],
    )


def apply_edits(
    content: str,
    edits: Sequence[EditRequest],
    limits: EditLimits = DEFAULT_LIMITS,
) -> EditOutcome:
    """Apply ``edits`` left to right, each against the previous edit's output.

    Every cap is checked before any matching starts. A failure at edit ``k``
    (1-indexed) raises ``BatchFailedError(k, inner)`` and the input buffer is
    the only valid state.
    """
    if not edits:
        raise CapExceededError("At least one edit is required")
    if len(edits) > limits.max_edits:
        raise CapExceededError(f"{len(edits)} edits requested; the limit is {limits.max_edits}")

    for index, edit in enumerate(edits, start=1):
        try:
            check_caps(edit, limits)
        except ToolguardError as e:
            raise BatchFailedError(index, e) from e

    buffer = content
    total = 0
    strategies: list[str] = []
    for index, edit in enumerate(edits, start=1):
        try:
            outcome = apply_edit(buffer, edit, limits)
        except ToolguardError as e:
            raise BatchFailedError(index, e) from e
        buffer = outcome.content
        total += outcome.replacements
        strategies.extend(outcome.strategies)

    return EditOutcome(content=buffer, replacements=total, strategies=strategies)
