"""Fallback text matching for edit requests.

Agents rarely reproduce file content byte-for-byte, so an ``old_string`` is
located by trying progressively looser strategies. The first strategy that
yields at least one grapheme-aligned match wins; later strategies are never
consulted.

Every strategy has the signature ``(content, target) -> list[(start, end)]``
and returns non-overlapping code-point spans into ``content``.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Callable
from dataclasses import dataclass

import regex

from toolguard.errors import AmbiguousMatchError, NoMatchError
from toolguard.types import MatchResult

Span = tuple[int, int]
Strategy = Callable[[str, str], list[Span]]

_GRAPHEME = regex.compile(r"\X")

_QUOTE_FOLD = str.maketrans(
    {
        "‘": "'", "’": "'", "‚": "'", "‛": "'", "′": "'",
        "“": '"', "”": '"', "„": '"', "‟": '"', "″": '"',
        "‐": "-", "‑": "-", "‒": "-", "–": "-", "—": "-",
        "―": "-", "−": "-",
        " ": " ",
    }
)


@dataclass(frozen=True)
class _Line:
    text: str
    start: int
    end: int  # excludes the terminator
    next_start: int  # includes the terminator


def _split_lines(content: str) -> list[_Line]:
    """Split on ``\\n`` only; a preceding ``\\r`` is kept out of ``text``."""
    lines: list[_Line] = []
    pos = 0
    length = len(content)
    while pos <= length:
        nl = content.find("\n", pos)
        if nl == -1:
            if pos < length:
                text = content[pos:]
                lines.append(_Line(text, pos, length, length))
            break
        end = nl - 1 if nl > pos and content[nl - 1] == "\r" else nl
        lines.append(_Line(content[pos:end], pos, end, nl + 1))
        pos = nl + 1
    return lines


def _split_target(target: str) -> tuple[list[str], bool]:
    ends_with_newline = target.endswith("\n")
    body = target[:-1] if ends_with_newline else target
    return [line.rstrip("\r") for line in body.split("\n")], ends_with_newline


def _line_span(lines: list[_Line], first: int, last: int, include_terminator: bool) -> Span:
    end = lines[last].next_start if include_terminator else lines[last].end
    return lines[first].start, end


def _window_search(
    lines: list[_Line],
    target_lines: list[str],
    include_terminator: bool,
    equal: Callable[[list[str], list[str]], bool],
) -> list[Span]:
    n = len(target_lines)
    spans: list[Span] = []
    i = 0
    while i + n <= len(lines):
        window = [line.text for line in lines[i : i + n]]
        if equal(window, target_lines):
            spans.append(_line_span(lines, i, i + n - 1, include_terminator))
            i += n
        else:
            i += 1
    return spans


def exact(content: str, target: str) -> list[Span]:
    """Plain substring occurrences."""
    if not target:
        return []
    spans: list[Span] = []
    pos = content.find(target)
    while pos != -1:
        spans.append((pos, pos + len(target)))
        pos = content.find(target, pos + len(target))
    return spans


def line_trimmed(content: str, target: str) -> list[Span]:
    """Contiguous lines equal after stripping each line."""
    target_lines, ends_nl = _split_target(target)
    stripped = [t.strip() for t in target_lines]
    if not any(stripped):
        return []

    def equal(window: list[str], _: list[str]) -> bool:
        return [w.strip() for w in window] == stripped

    return _window_search(_split_lines(content), target_lines, ends_nl, equal)


def _collapse_with_map(text: str) -> tuple[str, list[int], list[int]]:
    """Collapse whitespace runs to one space, tracking original offsets."""
    out: list[str] = []
    starts: list[int] = []
    ends: list[int] = []
    in_ws = False
    for i, ch in enumerate(text):
        if ch.isspace():
            if in_ws:
                ends[-1] = i + 1
                continue
            in_ws = True
            out.append(" ")
        else:
            in_ws = False
            out.append(ch)
        starts.append(i)
        ends.append(i + 1)
    return "".join(out), starts, ends


def _collapse(text: str) -> str:
    return " ".join(text.split())


def whitespace_normalized(content: str, target: str) -> list[Span]:
    """Occurrences after collapsing every whitespace run to a single space."""
    needle = _collapse(target)
    if not needle:
        return []
    haystack, starts, ends = _collapse_with_map(content)
    spans: list[Span] = []
    pos = haystack.find(needle)
    while pos != -1:
        spans.append((starts[pos], ends[pos + len(needle) - 1]))
        pos = haystack.find(needle, pos + len(needle))
    return spans


def leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def common_indent(lines: list[str]) -> str:
    """Longest whitespace prefix shared by all non-blank lines."""
    indents = [leading_whitespace(line) for line in lines if line.strip()]
    if not indents:
        return ""
    prefix = indents[0]
    for indent in indents[1:]:
        while not indent.startswith(prefix):
            prefix = prefix[:-1]
    return prefix


def _dedent(lines: list[str]) -> list[str]:
    indent = common_indent(lines)
    return [line[len(indent) :].rstrip() if line.strip() else "" for line in lines]


def indentation_flexible(content: str, target: str) -> list[Span]:
    """Contiguous lines equal once the common indentation is removed from both sides."""
    target_lines, ends_nl = _split_target(target)
    if not any(t.strip() for t in target_lines):
        return []
    dedented_target = _dedent(target_lines)

    def equal(window: list[str], _: list[str]) -> bool:
        return _dedent(window) == dedented_target

    return _window_search(_split_lines(content), target_lines, ends_nl, equal)


def normalize_line(line: str) -> str:
    """NFKC, typographic quotes and dashes folded to ASCII, whitespace collapsed."""
    return _collapse(unicodedata.normalize("NFKC", line).translate(_QUOTE_FOLD))


def fuzzy_line_sequence(content: str, target: str) -> list[Span]:
    """Non-blank line sequences equal after ``normalize_line``; blank lines are ignored."""
    target_lines, ends_nl = _split_target(target)
    wanted = [normalize_line(t) for t in target_lines]
    wanted = [w for w in wanted if w]
    if not wanted:
        return []

    lines = _split_lines(content)
    candidates = [(idx, normalize_line(line.text)) for idx, line in enumerate(lines)]
    candidates = [(idx, norm) for idx, norm in candidates if norm]

    n = len(wanted)
    spans: list[Span] = []
    i = 0
    while i + n <= len(candidates):
        if [norm for _, norm in candidates[i : i + n]] == wanted:
            first = candidates[i][0]
            last = candidates[i + n - 1][0]
            spans.append(_line_span(lines, first, last, ends_nl))
            i += n
        else:
            i += 1
    return spans


STRATEGIES: list[tuple[str, Strategy]] = [
    ("exact", exact),
    ("line_trimmed", line_trimmed),
    ("whitespace_normalized", whitespace_normalized),
    ("indentation_flexible", indentation_flexible),
    ("fuzzy_line_sequence", fuzzy_line_sequence),
]

# Strategies whose spans cover whole lines; replacements through them are re-indented.
LINE_STRATEGIES = frozenset({"line_trimmed", "indentation_flexible", "fuzzy_line_sequence"})


def grapheme_boundaries(content: str) -> list[int]:
    """Code-point offsets at which a grapheme cluster starts, plus ``len(content)``."""
    bounds = [m.start() for m in _GRAPHEME.finditer(content)]
    bounds.append(len(content))
    return bounds


def find(content: str, old_string: str, replace_all: bool = False) -> list[MatchResult]:
    """Locate ``old_string`` in ``content`` using the first strategy that matches.

    Raises:
        NoMatchError: no strategy produced a grapheme-aligned match
        AmbiguousMatchError: more than one match and ``replace_all`` is false
    """
    if not old_string:
        raise NoMatchError("old_string must not be empty")

    bounds = grapheme_boundaries(content)
    index_of = {offset: i for i, offset in enumerate(bounds)}

    for name, strategy in STRATEGIES:
        spans = [(s, e) for s, e in strategy(content, old_string) if s in index_of and e in index_of and e > s]
        if not spans:
            continue
        if len(spans) > 1 and not replace_all:
            raise AmbiguousMatchError(len(spans))
        return [
            MatchResult(
                strategy=name,
                start=index_of[s],
                length=index_of[e] - index_of[s],
                span=(s, e),
            )
            for s, e in spans
        ]

    raise NoMatchError("old_string not found in file. Read the file again and copy the exact text to replace.")
