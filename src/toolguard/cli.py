"""Command-line interface for toolguard.

Commands:
- toolguard read <repo_path> <path>: Print a file through the path validator
- toolguard edit <repo_path> <path>: Apply one edit
- toolguard multi-edit <repo_path> <path> <edits.json>: Apply an atomic edit batch
- toolguard classify <subcommand> [args...]: Classify a git invocation
- toolguard git <repo_path> <subcommand> [args...]: Run git through the sandbox
- toolguard run <repo_path> <command> [args...]: Run an allowlisted command
- toolguard dispatch <repo_path>: Read a JSON tool request on stdin, print the response
- toolguard status <repo_path>: Show metrics from telemetry
- toolguard init <repo_path>: Write a default .toolguard.yml
- toolguard telemetry tail <repo_path>: Print recent telemetry events
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections import deque
from pathlib import Path

import click

from .approval import (
    AlwaysRejectHandler,
    ApprovalHandler,
    handler_from_config,
)
from .config import ToolguardConfig, load_config
from .core.git_safety import classify as classify_git
from .core.git_safety import parse_git_args
from .core.telemetry import prune_telemetry_file
from .dispatch import ToolDispatcher
from .errors import DestructiveRefusedError, ToolguardError
from .session import SessionContext
from .status import StatusWindow, compute_status
from .types import ApprovalRequest
from .workspace import Workspace

PASSTHROUGH = {"ignore_unknown_options": True, "allow_interspersed_args": False}


def _load(repo_path: Path, config: str | None) -> ToolguardConfig:
    if config:
        toolguard_config = ToolguardConfig.load_from_file(config)
        toolguard_config.apply_env_overrides()
        return toolguard_config
    return load_config(repo_path)


def _workspace(repo_path: str, config: str | None) -> Workspace:
    repo_path_obj = Path(repo_path).resolve()
    toolguard_config = _load(repo_path_obj, config)
    prune_telemetry_file(repo_path_obj / toolguard_config.telemetry.log_path, toolguard_config.telemetry.retention_days)
    return Workspace(session=SessionContext(repo_path_obj), config=toolguard_config)


def _fail(e: ToolguardError) -> click.ClickException:
    return click.ClickException(f"[{e.code}] {e.message}")


@click.group()
@click.version_option(version="0.3.0", prog_name="toolguard")
def cli() -> None:
    """toolguard - Sandboxed file edits and commands for coding agents."""
    pass


@cli.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.argument("path")
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def read(repo_path: str, path: str, config: str | None) -> None:
    """Print a file from the project.

    Example:
        toolguard read . src/main.py
    """
    ws = _workspace(repo_path, config)
    try:
        click.echo(ws.read_file(path), nl=False)
    except ToolguardError as e:
        raise _fail(e) from e


@cli.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.argument("path")
@click.option("--old", "old_string", required=True, help="Text to replace")
@click.option("--new", "new_string", required=True, help="Replacement text")
@click.option("--replace-all", is_flag=True, help="Replace every occurrence")
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def edit(repo_path: str, path: str, old_string: str, new_string: str, replace_all: bool, config: str | None) -> None:
    """Replace one occurrence of --old with --new.

    The operator invoking the CLI counts as having read the file.

    Example:
        toolguard edit . src/main.py --old "return 1" --new "return 2"
    """
    ws = _workspace(repo_path, config)
    try:
        ws.read_file(path)
        click.echo(ws.edit_file(path, old_string, new_string, replace_all))
    except ToolguardError as e:
        raise _fail(e) from e


@cli.command("multi-edit")
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.argument("path")
@click.argument("edits_file", type=click.File("r"))
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def multi_edit(repo_path: str, path: str, edits_file, config: str | None) -> None:
    """Apply a JSON list of edits atomically ("-" reads stdin).

    Each edit is {"old_string": ..., "new_string": ..., "replace_all": false}.

    Example:
        toolguard multi-edit . src/main.py edits.json
    """
    try:
        edits = json.load(edits_file)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid edits JSON: {e}") from e
    if not isinstance(edits, list):
        raise click.ClickException("Edits JSON must be a list")

    ws = _workspace(repo_path, config)
    try:
        ws.read_file(path)
        click.echo(ws.multi_edit_file(path, edits))
    except (KeyError, TypeError) as e:
        raise click.ClickException(f"Malformed edit entry: {e}") from e
    except ToolguardError as e:
        raise _fail(e) from e


@cli.command(context_settings=PASSTHROUGH)
@click.argument("subcommand")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def classify(subcommand: str, args: tuple[str, ...]) -> None:
    """Classify a git invocation without running it.

    Example:
        toolguard classify clean -fd
    """
    try:
        level = classify_git(subcommand, args)
    except ToolguardError as e:
        raise _fail(e) from e
    spec = parse_git_args(subcommand, args)
    click.echo(level.value)
    click.echo(f"flags: {' '.join(sorted(spec.canonical_flags)) or '(none)'}", err=True)


def _approval_handler(toolguard_config: ToolguardConfig, dry_run: bool) -> ApprovalHandler:
    if dry_run:
        return AlwaysRejectHandler()
    return handler_from_config(toolguard_config.approval, interactive=sys.stdin.isatty())


@cli.command(context_settings=PASSTHROUGH)
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--allow-destructive", is_flag=True, help="Run destructive commands without asking")
@click.option("--dry-run", is_flag=True, help="Refuse destructive commands without asking")
@click.option("--timeout-ms", type=int, default=None, help="Command timeout in milliseconds")
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.argument("subcommand")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def git(
    config: str | None,
    allow_destructive: bool,
    dry_run: bool,
    timeout_ms: int | None,
    repo_path: str,
    subcommand: str,
    args: tuple[str, ...],
) -> None:
    """Run git in the project through the sandbox.

    Destructive commands require approval (interactive prompt, or the
    configured webhook) unless --allow-destructive is given.

    Example:
        toolguard git . status
        toolguard git --allow-destructive . reset --hard HEAD~1
    """
    ws = _workspace(repo_path, config)
    try:
        try:
            out = ws.git_command(subcommand, args, allow_destructive=allow_destructive, timeout_ms=timeout_ms)
        except DestructiveRefusedError as refused:
            handler = _approval_handler(ws.config, dry_run=dry_run)
            request = ApprovalRequest(
                subcommand=subcommand,
                args=tuple(args),
                reason=refused.message,
                session_id=ws.run_id,
            )
            if not asyncio.run(handler.request_approval(request)):
                raise
            out = ws.git_command(subcommand, args, allow_destructive=True, timeout_ms=timeout_ms)
    except ToolguardError as e:
        raise _fail(e) from e

    result = json.loads(out)
    click.echo(result["stdout"], nl=False)
    if result["stderr"]:
        click.echo(result["stderr"], nl=False, err=True)
    sys.exit(result["exit_code"])


@cli.command(context_settings=PASSTHROUGH)
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--timeout-ms", type=int, default=None, help="Command timeout in milliseconds")
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def run(config: str | None, timeout_ms: int | None, repo_path: str, command: str, args: tuple[str, ...]) -> None:
    """Run an allowlisted command in the project.

    Example:
        toolguard run . ls -la src
    """
    ws = _workspace(repo_path, config)
    try:
        result = json.loads(ws.run_command(command, args, timeout_ms=timeout_ms))
    except ToolguardError as e:
        raise _fail(e) from e
    click.echo(result["stdout"], nl=False)
    if result["stderr"]:
        click.echo(result["stderr"], nl=False, err=True)
    if result["truncated"]:
        click.echo("(output truncated)", err=True)
    sys.exit(result["exit_code"])


@cli.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def dispatch(repo_path: str, config: str | None) -> None:
    """Run tool requests from stdin, one JSON object per line.

    Each line is {"name": ..., "arguments": {...}}; each response is printed
    as one JSON line. All requests share one session, so a read_file earlier
    in the stream satisfies read-before-write for later edits.

    Example:
        echo '{"name": "read_file", "arguments": {"path": "README.md"}}' | toolguard dispatch .
    """
    dispatcher = ToolDispatcher(_workspace(repo_path, config))
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            response = {"error": f"Invalid JSON request: {e.msg}", "code": "InvalidArguments"}
        else:
            response = dispatcher.dispatch(request)
        click.echo(json.dumps(response, ensure_ascii=False))


@cli.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
def init(repo_path: str) -> None:
    """Initialize toolguard configuration in a project.

    Creates a default .toolguard.yml configuration file.

    Example:
        toolguard init /path/to/repo
    """
    repo_path_obj = Path(repo_path).resolve()
    config_path = repo_path_obj / ".toolguard.yml"

    if config_path.exists():
        click.echo(f"Configuration already exists: {config_path}")
        if not click.confirm("Overwrite?"):
            return

    default_config = """# toolguard configuration

paths:
  forbidden_components:
    - .git
    - .toolguard

edits:
  max_edits: 50
  max_string_length: 100000
  max_file_bytes: 10485760

read_tracking:
  legacy_read_policy: hard_fail

sandbox:
  default_timeout_ms: 25000
  max_timeout_ms: 300000
  max_output_bytes: 1048576
  max_workers: 4
  env_allowlist: [PATH, LANG, LC_ALL, TZ]

git:
  extra_destructive_rules: {}

rate_limits:
  enabled: true
  limits:
    run_command: [60, 60]
    git_command: [60, 60]

approval:
  webhook:
    url: null
    timeout_seconds: 300

telemetry:
  enabled: true
  log_path: .toolguard/telemetry.jsonl
  retention_days: 30
"""

    config_path.write_text(default_config)
    click.echo(f"✓ Created configuration: {config_path}")
    click.echo()
    click.echo("Next steps:")
    click.echo("1. Edit .toolguard.yml to customize settings")
    click.echo("2. Try it: toolguard classify clean -fd")


@cli.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option(
    "--format",
    "-f",
    "format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
)
@click.option(
    "--window-minutes",
    type=int,
    default=60,
    show_default=True,
    help="Metrics window (best-effort from telemetry).",
)
def status(repo_path: str, config: str | None, format: str, window_minutes: int) -> None:
    """Show operational status/metrics from telemetry."""
    repo_path_obj = Path(repo_path).resolve()
    toolguard_config = _load(repo_path_obj, config)

    telemetry_path = repo_path_obj / toolguard_config.telemetry.log_path
    st = compute_status(telemetry_path, window=StatusWindow(seconds=max(1, window_minutes) * 60.0))

    if format == "json":
        click.echo(json.dumps(st, indent=2))
        return

    click.echo(f"Telemetry: {telemetry_path}")
    click.echo(f"Window: {window_minutes} minutes")
    click.echo(f"Tool calls/hour: {st.get('tool_calls_per_hour'):.2f}")
    click.echo(f"Edit success rate: {st.get('edit_success_rate')}")
    click.echo(f"Edit strategies: {st.get('edit_strategies')}")
    click.echo(f"Commands executed: {st.get('commands_executed')}")
    click.echo(f"Commands refused: {st.get('commands_refused')}")
    click.echo(f"Commands timed out: {st.get('commands_timed_out')}")
    click.echo(f"Security violations: {st.get('security_violations')}")

    last = st.get("last_failure") or {}
    if last:
        click.echo()
        data = last.get("data") or {}
        click.echo(f"Last failure: run_id={last.get('run_id')} tool={data.get('tool')} code={data.get('code')}")


@cli.group()
def telemetry() -> None:
    """Telemetry utilities."""


@telemetry.command("tail")
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option(
    "--lines",
    "-n",
    type=int,
    default=50,
    show_default=True,
    help="Number of telemetry lines to show.",
)
def telemetry_tail(repo_path: str, config: str | None, lines: int) -> None:
    """Print the last N telemetry events."""
    repo_path_obj = Path(repo_path).resolve()
    toolguard_config = _load(repo_path_obj, config)

    telemetry_path = repo_path_obj / toolguard_config.telemetry.log_path

    if not telemetry_path.exists():
        raise click.ClickException(f"Telemetry file not found: {telemetry_path}")

    with open(telemetry_path, encoding="utf-8") as f:
        tail = deque(f, maxlen=max(0, lines))

    for ln in tail:
        click.echo(ln, nl=False)


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
