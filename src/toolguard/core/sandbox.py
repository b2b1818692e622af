"""Sandboxed command execution.

Key security properties:
- Executes an argv list (no shell, no bash -lc); shell interpreters are never allowed.
- Executable allowlist is checked before anything is spawned.
- Arguments may not reach outside the project root.
- git invocations are classified and destructive ones refused unless explicitly allowed.
- The child runs in its own process group with a scrubbed environment; on
  timeout the whole group is killed and reaped.
"""

from __future__ import annotations

import asyncio
import os
import re
import signal
import subprocess
import time
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Any

from toolguard.config import SandboxConfig
from toolguard.core.git_safety import (
    ALLOWED_SUBCOMMANDS,
    build_rules,
    classify_spec,
    describe_rule,
    matching_rule,
    parse_git_args,
    validate_git_paths,
)
from toolguard.core.safe_paths import FORBIDDEN_COMPONENTS, validate_path
from toolguard.errors import (
    DestructiveRefusedError,
    DisallowedError,
    PathTraversalError,
    TimedOutError,
)
from toolguard.types import SafetyLevel

# Absolute paths outside the project that commands may still name.
SAFE_SYSTEM_PATHS = frozenset(
    {"/dev/null", "/dev/zero", "/dev/urandom", "/dev/random", "/dev/stdin", "/dev/stdout", "/dev/stderr"}
)

# Non-interactive git: no prompts, no pager, no system or global config.
GIT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_PAGER": "cat",
    "PAGER": "cat",
    "GIT_CONFIG_NOSYSTEM": "1",
    "GIT_CONFIG_GLOBAL": "/dev/null",
}

_ARG_SPLIT = re.compile(r"[/=]")


def _option_value(arg: str) -> str:
    """The part of ``arg`` that may name a path: ``--opt=value`` or an attached ``-Xvalue``."""
    if arg.startswith("--"):
        return arg.split("=", 1)[1] if "=" in arg else arg
    if arg.startswith("-") and len(arg) > 2:
        return arg[2:]
    return arg


def _truncate(data: bytes, limit: int) -> tuple[str, bool]:
    truncated = len(data) > limit
    if truncated:
        data = data[:limit]
    return data.decode("utf-8", errors="replace"), truncated


class CommandSandbox:
    """
    Sandbox command runner.

    One instance is meant to be shared by every session: commands run on a
    bounded thread pool sized by ``SandboxConfig.max_workers``.
    """

    def __init__(
        self,
        config: SandboxConfig | None = None,
        git_rules: Mapping[str, Iterable[Iterable[str]]] | None = None,
        forbidden_components: Iterable[str] = FORBIDDEN_COMPONENTS,
    ):
        self.config = config or SandboxConfig()
        self.git_rules = build_rules(git_rules)
        self.forbidden_components = frozenset(forbidden_components)
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="toolguard-sandbox",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> CommandSandbox:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # Validation

    def _check_argv_allowed(self, command: str, args: Sequence[str]) -> None:
        if not command:
            raise DisallowedError("Empty command")

        for a in [command, *args]:
            if any(ch in a for ch in ["\n", "\r", "\x00"]):
                raise DisallowedError("Newlines/NUL not allowed in arguments")

        if "/" in command or "\\" in command:
            raise DisallowedError(f"Command must be a bare executable name: {command}")
        if command in self.config.blocked_interpreters:
            raise DisallowedError(f"Shell interpreters are not allowed: {command}")
        if not self.config.is_command_allowed(command):
            raise DisallowedError(f"Command not in allowlist: {command}")

    def _check_path_args(self, args: Sequence[str], project_root: Path) -> None:
        for arg in args:
            candidate = _option_value(arg)
            if ".." in _ARG_SPLIT.split(arg) or ".." in _ARG_SPLIT.split(candidate):
                raise PathTraversalError(f"Path traversal not allowed in argument: {arg}")
            if not candidate.startswith("/") or candidate in SAFE_SYSTEM_PATHS:
                continue
            try:
                validate_path(candidate, project_root, ())
            except (PathTraversalError, DisallowedError) as e:
                raise PathTraversalError(f"Absolute path outside project not allowed: {arg}") from e

    def check_git(self, args: Sequence[str], project_root: Path, allow_destructive: bool = False) -> SafetyLevel:
        """Classify a ``git`` argv tail, raising if it may not run."""
        if not args:
            raise DisallowedError("git requires a subcommand")
        subcommand, rest = args[0], args[1:]
        if subcommand not in ALLOWED_SUBCOMMANDS:
            raise DisallowedError(f"Git subcommand not allowed: {subcommand}")

        spec = parse_git_args(subcommand, rest, self.git_rules)
        level = classify_spec(spec, self.git_rules)
        validate_git_paths(spec, project_root, self.forbidden_components)
        self._check_path_args(spec.positional_args, project_root)

        if level is SafetyLevel.DESTRUCTIVE and not allow_destructive:
            rule = matching_rule(spec, self.git_rules)
            what = describe_rule(rule) if rule else f"git {subcommand}"
            raise DestructiveRefusedError(
                f"Refusing destructive command ({what}); set allow_destructive to run it"
            )
        return level

    def check(
        self,
        command: str,
        args: Sequence[str],
        project_root: Path,
        allow_destructive: bool = False,
    ) -> SafetyLevel | None:
        """Run every pre-spawn check; returns the git safety level for git commands."""
        self._check_argv_allowed(command, args)
        if command == "git":
            return self.check_git(args, project_root, allow_destructive)
        self._check_path_args(args, project_root)
        return None

    # Execution

    def _build_env(self, command: str) -> dict[str, str]:
        env = {k: os.environ[k] for k in self.config.env_allowlist if k in os.environ}
        if command == "git":
            env.update(GIT_ENV)
        return env

    def resolve_timeout(self, timeout_s: float | None) -> float:
        if timeout_s is None or timeout_s <= 0:
            timeout_s = self.config.default_timeout_ms / 1000
        return min(timeout_s, self.config.max_timeout_ms / 1000)

    def _run(self, argv: list[str], cwd: Path, timeout_s: float, env: dict[str, str]) -> dict[str, Any]:
        t0 = time.time()
        try:
            p = subprocess.Popen(
                argv,
                cwd=str(cwd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                shell=False,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError:
            return {
                "argv": argv,
                "exit_code": 127,
                "stdout": "",
                "stderr": f"{argv[0]} was not found on PATH",
                "duration_s": round(time.time() - t0, 3),
                "truncated": False,
            }

        try:
            out, err = p.communicate(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            self._kill_group(p)
            p.communicate()
            raise TimedOutError(timeout_s) from None

        limit = self.config.max_output_bytes
        stdout, out_truncated = _truncate(out, limit)
        stderr, err_truncated = _truncate(err, limit)
        return {
            "argv": argv,
            "exit_code": p.returncode,
            "stdout": stdout,
            "stderr": stderr,
            "duration_s": round(time.time() - t0, 3),
            "truncated": out_truncated or err_truncated,
        }

    @staticmethod
    def _kill_group(p: subprocess.Popen) -> None:
        try:
            os.killpg(p.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except PermissionError:
            p.kill()

    def _prepare(
        self,
        command: str,
        args: Sequence[str],
        project_root: Path,
        timeout_s: float | None,
        allow_destructive: bool,
    ) -> tuple[partial, SafetyLevel | None]:
        level = self.check(command, args, project_root, allow_destructive)
        job = partial(
            self._run,
            [command, *args],
            project_root,
            self.resolve_timeout(timeout_s),
            self._build_env(command),
        )
        return job, level

    def execute(
        self,
        command: str,
        args: Sequence[str],
        project_root: Path,
        timeout_s: float | None = None,
        allow_destructive: bool = False,
    ) -> dict[str, Any]:
        """Validate and run ``command args`` in ``project_root``.

        Raises:
            DisallowedError: executable, subcommand or flag not permitted
            PathTraversalError: an argument points outside the project
            DestructiveRefusedError: destructive git command without ``allow_destructive``
            TimedOutError: the process group was killed after ``timeout_s``
        """
        job, level = self._prepare(command, args, project_root, timeout_s, allow_destructive)
        result = self._executor.submit(job).result()
        if level is not None:
            result["safety"] = level.value
        return result

    async def execute_async(
        self,
        command: str,
        args: Sequence[str],
        project_root: Path,
        timeout_s: float | None = None,
        allow_destructive: bool = False,
    ) -> dict[str, Any]:
        job, level = self._prepare(command, args, project_root, timeout_s, allow_destructive)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(self._executor, job)
        if level is not None:
            result["safety"] = level.value
        return result
