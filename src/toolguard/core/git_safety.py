"""Git command classification.

Arguments are canonicalized before any decision is made: ``--flag=value`` is
split, clustered short options are expanded, unambiguous abbreviations of long
options are widened to the options they could mean, and push refspecs with
``+``/``:`` prefixes are turned into the flags they imply. Destructive
detection is then a lookup in ``DESTRUCTIVE_RULES``; no raw token is ever
compared against a pattern.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

from toolguard.core.safe_paths import FORBIDDEN_COMPONENTS, validate_path
from toolguard.errors import DisallowedError
from toolguard.types import DestructiveRule, GitArgSpec, SafetyLevel

READ_ONLY_SUBCOMMANDS = frozenset(
    {
        "status", "diff", "log", "show", "branch", "remote", "tag", "rev-parse",
        "blame", "reflog", "ls-files", "describe", "shortlog",
    }
)

MODIFYING_SUBCOMMANDS = frozenset(
    {
        "add", "commit", "checkout", "switch", "merge", "rebase", "stash", "push",
        "pull", "fetch", "reset", "revert", "cherry-pick", "clean", "rm", "mv", "init",
    }
)

ALLOWED_SUBCOMMANDS = READ_ONLY_SUBCOMMANDS | MODIFYING_SUBCOMMANDS


def _sets(*flag_groups: Iterable[str]) -> list[frozenset[str]]:
    return [frozenset(group) for group in flag_groups]


# subcommand (or "subcommand action") -> flag sets; any superset is destructive.
DESTRUCTIVE_RULES: dict[str, list[frozenset[str]]] = {
    "reset": _sets({"--hard"}),
    "clean": _sets({"-f"}, {"--force"}),
    "push": _sets({"--force"}, {"-f"}, {"--force-with-lease"}, {"--mirror"}, {"--delete"}, {"-d"}, {"--prune"}),
    "branch": _sets(
        {"-D"},
        {"--delete", "--force"},
        {"--delete", "-f"},
        {"-d", "--force"},
        {"-d", "-f"},
        {"-M"},
        {"-m", "--force"},
        {"-m", "-f"},
        {"--move", "--force"},
        {"-C"},
    ),
    "checkout": _sets({"-f"}, {"--force"}, {"-B"}, {"--"}),
    "switch": _sets({"-f"}, {"--force"}, {"--discard-changes"}, {"-C"}),
    "rm": _sets({"-f"}, {"--force"}),
    "tag": _sets({"-f"}, {"--force"}),
    "stash drop": _sets(set()),
    "stash clear": _sets(set()),
    "reflog expire": _sets(set()),
    "reflog delete": _sets(set()),
}

# Flags that turn an otherwise read-only subcommand into a modifying one.
MODIFYING_FLAGS: dict[str, frozenset[str]] = {
    "branch": frozenset({"-d", "--delete", "-m", "--move", "-c", "--copy", "-u", "--set-upstream-to", "--unset-upstream"}),
    "tag": frozenset({"-d", "--delete", "-a", "--annotate", "-s", "--sign", "-m", "--message", "-F", "--file"}),
}

# Positional actions that modify state for read-only subcommands.
MODIFYING_ACTIONS: dict[str, frozenset[str]] = {
    "remote": frozenset({"add", "remove", "rm", "rename", "set-url", "set-head", "set-branches", "prune", "update"}),
    "reflog": frozenset({"expire", "delete"}),
}

# Listing flags under which positionals are patterns, not names to create.
LISTING_FLAGS: dict[str, frozenset[str]] = {
    "branch": frozenset({"-l", "--list", "-a", "--all", "-r", "--remotes", "--contains", "--merged", "--no-merged", "--points-at", "--show-current", "-v", "-vv", "--verbose"}),
    "tag": frozenset({"-l", "--list", "--contains", "--merged", "--no-merged", "--points-at", "-v", "--verify", "-n"}),
}

# Flags that let git run arbitrary programs.
BLOCKED_FLAGS = frozenset({"--upload-pack", "--receive-pack", "--exec"})
BLOCKED_FLAGS_BY_SUBCOMMAND: dict[str, frozenset[str]] = {
    "rebase": frozenset({"-x"}),
}

# Flags whose values are filesystem paths and must stay inside the project.
PATH_FLAGS = frozenset(
    {
        "--output", "--output-directory", "-o", "--git-dir", "--work-tree", "--file", "-F", "--template",
        "--contents", "--pathspec-from-file",
    }
)

# Short options that take a value; a value option ends its cluster.
SHORT_VALUE_OPTIONS: dict[str, str] = {
    "commit": "mFcCt",
    "tag": "mFu",
    "stash": "m",
    "clean": "e",
    "log": "nL",
    "show": "n",
    "shortlog": "n",
    "diff": "O",
    "merge": "msXF",
    "rebase": "sXx",
    "cherry-pick": "mX",
    "revert": "mX",
    "pull": "sX",
    "push": "o",
    "branch": "u",
    "checkout": "bB",
    "switch": "cC",
    "blame": "L",
    "ls-files": "xX",
}

LONG_VALUE_OPTIONS = frozenset(
    {
        "--message", "--file", "--author", "--date", "--template", "--output",
        "--output-directory", "--git-dir", "--work-tree", "--exec", "--upload-pack",
        "--receive-pack", "--push-option", "--set-upstream-to", "--onto", "--strategy",
        "--strategy-option", "--reuse-message", "--reedit-message", "--fixup", "--squash",
        "--cleanup", "--max-count", "--skip", "--since", "--until", "--after", "--before",
        "--grep", "--exclude", "--format", "--repo", "--depth", "--orphan", "--contents",
        "--pathspec-from-file",
    }
)


def build_rules(extra: Mapping[str, Iterable[Iterable[str]]] | None = None) -> dict[str, list[frozenset[str]]]:
    """Merge configured rules into a copy of the built-in table."""
    rules = {key: list(sets) for key, sets in DESTRUCTIVE_RULES.items()}
    for key, groups in (extra or {}).items():
        rules.setdefault(key, []).extend(frozenset(group) for group in groups)
    return rules


def _known_long_flags(subcommand: str, rules: Mapping[str, list[frozenset[str]]]) -> set[str]:
    known = set(LONG_VALUE_OPTIONS) | BLOCKED_FLAGS | PATH_FLAGS
    for key, sets in rules.items():
        if key == subcommand or key.startswith(subcommand + " "):
            for group in sets:
                known.update(flag for flag in group if flag.startswith("--"))
    for table in (MODIFYING_FLAGS, LISTING_FLAGS):
        known.update(flag for flag in table.get(subcommand, ()) if flag.startswith("--"))
    return {flag for flag in known if len(flag) > 2}


def _expand_abbreviation(flag: str, known: set[str]) -> set[str]:
    """git accepts unique prefixes of long options; widen to every option the prefix could mean."""
    if flag in known or flag == "--" or flag.startswith("--no-"):
        return {flag}
    candidates = {option for option in known if option.startswith(flag)}
    return candidates | {flag}


def parse_git_args(
    subcommand: str,
    raw_args: Iterable[str],
    rules: Mapping[str, list[frozenset[str]]] | None = None,
) -> GitArgSpec:
    """Canonicalize ``raw_args`` for ``subcommand`` into a ``GitArgSpec``."""
    rules = DESTRUCTIVE_RULES if rules is None else rules
    args = list(raw_args)
    short_values = SHORT_VALUE_OPTIONS.get(subcommand, "")
    known = _known_long_flags(subcommand, rules)

    flags: set[str] = set()
    positional: list[str] = []
    values: list[tuple[str, str]] = []
    pathspecs: list[str] = []

    i = 0
    while i < len(args):
        token = args[i]
        i += 1

        if token == "--":
            flags.add("--")
            pathspecs.extend(args[i:])
            positional.extend(args[i:])
            break

        if token.startswith("--"):
            name, has_value, value = token.partition("=")
            expanded = _expand_abbreviation(name, known)
            flags.update(expanded)
            if not has_value and expanded & LONG_VALUE_OPTIONS and i < len(args) and not args[i].startswith("-"):
                value, has_value = args[i], True
                i += 1
            if has_value:
                # Keyed by every option the name could mean, so path checks see "--fil" as "--file".
                values.extend((option, value) for option in sorted(expanded))
            continue

        if token.startswith("-") and len(token) > 1:
            cluster = token[1:]
            if cluster.isdigit():
                flags.add("-n")
                values.append(("-n", cluster))
                continue
            for pos, ch in enumerate(cluster):
                flag = f"-{ch}"
                flags.add(flag)
                if ch in short_values:
                    rest = cluster[pos + 1 :]
                    if rest:
                        values.append((flag, rest))
                    elif i < len(args) and not args[i].startswith("-"):
                        values.append((flag, args[i]))
                        i += 1
                    break
            continue

        positional.append(token)

    if subcommand == "push":
        for ref in positional:
            if ref.startswith("+"):
                flags.add("--force")
            elif ref.startswith(":") and len(ref) > 1:
                flags.add("--delete")

    return GitArgSpec(
        subcommand=subcommand,
        canonical_flags=frozenset(flags),
        positional_args=tuple(positional),
        flag_values=tuple(values),
        pathspecs=tuple(pathspecs),
    )


def destructive_rules_for(spec: GitArgSpec, rules: Mapping[str, list[frozenset[str]]]) -> list[DestructiveRule]:
    return [
        DestructiveRule(key, required)
        for key in spec.rule_keys
        for required in rules.get(key, ())
    ]


def matching_rule(spec: GitArgSpec, rules: Mapping[str, list[frozenset[str]]] | None = None) -> DestructiveRule | None:
    """First destructive rule ``spec`` satisfies, if any."""
    rules = DESTRUCTIVE_RULES if rules is None else rules
    for rule in destructive_rules_for(spec, rules):
        if rule.matches(spec):
            return rule
    return None


def is_destructive(spec: GitArgSpec, rules: Mapping[str, list[frozenset[str]]] | None = None) -> bool:
    return matching_rule(spec, rules) is not None


def describe_rule(rule: DestructiveRule) -> str:
    flags = " ".join(sorted(rule.required_flags))
    return f"git {rule.subcommand} {flags}".rstrip()


def _check_blocked(spec: GitArgSpec) -> None:
    blocked = BLOCKED_FLAGS | BLOCKED_FLAGS_BY_SUBCOMMAND.get(spec.subcommand, frozenset())
    hit = sorted(spec.canonical_flags & blocked)
    if hit:
        raise DisallowedError(f"Git flag not allowed: {hit[0]}")


def _is_modifying_read_only(spec: GitArgSpec) -> bool:
    sub = spec.subcommand
    if spec.canonical_flags & MODIFYING_FLAGS.get(sub, frozenset()):
        return True
    if spec.action and spec.action in MODIFYING_ACTIONS.get(sub, frozenset()):
        return True
    if sub in LISTING_FLAGS and spec.positional_args and "--" not in spec.canonical_flags:
        # "git branch name" / "git tag name" create refs unless listing.
        return not (spec.canonical_flags & LISTING_FLAGS[sub])
    return False


def classify_spec(spec: GitArgSpec, rules: Mapping[str, list[frozenset[str]]] | None = None) -> SafetyLevel:
    if spec.subcommand not in ALLOWED_SUBCOMMANDS:
        raise DisallowedError(f"Git subcommand not allowed: {spec.subcommand}")
    _check_blocked(spec)
    if is_destructive(spec, rules):
        return SafetyLevel.DESTRUCTIVE
    if spec.subcommand in MODIFYING_SUBCOMMANDS:
        return SafetyLevel.MODIFYING
    if _is_modifying_read_only(spec):
        return SafetyLevel.MODIFYING
    return SafetyLevel.READ_ONLY


def classify(
    subcommand: str,
    raw_args: Iterable[str] = (),
    rules: Mapping[str, list[frozenset[str]]] | None = None,
) -> SafetyLevel:
    """Classify a git invocation.

    Raises:
        DisallowedError: unknown subcommand or an execution-injection flag
    """
    if subcommand not in ALLOWED_SUBCOMMANDS:
        raise DisallowedError(f"Git subcommand not allowed: {subcommand}")
    rules = DESTRUCTIVE_RULES if rules is None else rules
    return classify_spec(parse_git_args(subcommand, raw_args, rules), rules)


def validate_git_paths(
    spec: GitArgSpec,
    project_root: Path | str,
    forbidden_components: Iterable[str] = FORBIDDEN_COMPONENTS,
) -> None:
    """Re-validate path-bearing flag values and ``--`` pathspecs against the project root."""
    forbidden = frozenset(forbidden_components)
    for flag, value in spec.flag_values:
        if flag in PATH_FLAGS:
            validate_path(value, project_root, forbidden)
    for pathspec in spec.pathspecs:
        validate_path(pathspec, project_root, forbidden)
