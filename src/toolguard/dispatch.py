"""Tool dispatch boundary.

Requests arrive as ``{"name": str, "arguments": dict}`` and always produce a
plain dict: ``{"ok": str}`` on success or ``{"error": str, "code": str}`` on
failure. Nothing raised by a tool escapes this module; unexpected exceptions
are reported with a generic message and logged to telemetry.
"""

from __future__ import annotations

import asyncio
import time
import traceback
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .core.redaction import redact_text, scrub_paths
from .errors import DisallowedError, PathTraversalError, SymlinkEscapeError, ToolguardError
from .rate_limit import RateLimiter
from .workspace import Workspace

GENERIC_ERROR = "An internal error occurred while running the tool"

SECURITY_CODES = frozenset(
    {PathTraversalError.code, SymlinkEscapeError.code, DisallowedError.code, "DestructiveRefused"}
)


class ToolArgs(BaseModel):
    """Base for tool arguments: unknown parameters are rejected."""

    model_config = ConfigDict(extra="forbid")


class PathArgs(ToolArgs):
    path: str = Field(min_length=1)


class WriteFileArgs(PathArgs):
    content: str


class EditFileArgs(PathArgs):
    old_string: str
    new_string: str
    replace_all: bool = False


class EditSpec(ToolArgs):
    old_string: str
    new_string: str
    replace_all: bool = False


class MultiEditFileArgs(PathArgs):
    edits: list[EditSpec] = Field(min_length=1)


class ListDirectoryArgs(ToolArgs):
    path: str = "."
    recursive: bool = False


class DeleteFileArgs(PathArgs):
    confirm: bool = False


class RunCommandArgs(ToolArgs):
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    timeout_ms: int | None = Field(default=None, gt=0)


class GitCommandArgs(ToolArgs):
    subcommand: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    allow_destructive: bool = False
    timeout_ms: int | None = Field(default=None, gt=0)


class ToolRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


def _validation_message(tool: str, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "arguments"
        if item["type"] == "extra_forbidden":
            problems.append(f"unknown parameter '{location}'")
        elif item["type"] == "missing":
            problems.append(f"missing parameter '{location}'")
        else:
            problems.append(f"invalid parameter '{location}': {item['msg']}")
    return f"Invalid arguments for {tool}: " + "; ".join(problems)


class ToolDispatcher:
    """Route validated tool requests to a ``Workspace``."""

    def __init__(self, workspace: Workspace, rate_limiter: RateLimiter | None = None):
        self.workspace = workspace
        limits = workspace.config.rate_limits
        self.rate_limiter = rate_limiter or RateLimiter(limits.limits, enabled=limits.enabled)
        self._tools: dict[str, tuple[type[ToolArgs], Callable[[Any], str]]] = {
            "read_file": (PathArgs, lambda a: workspace.read_file(a.path)),
            "write_file": (WriteFileArgs, lambda a: workspace.write_file(a.path, a.content)),
            "edit_file": (
                EditFileArgs,
                lambda a: workspace.edit_file(a.path, a.old_string, a.new_string, a.replace_all),
            ),
            "multi_edit_file": (
                MultiEditFileArgs,
                lambda a: workspace.multi_edit_file(a.path, [e.model_dump() for e in a.edits]),
            ),
            "list_directory": (ListDirectoryArgs, lambda a: workspace.list_directory(a.path, a.recursive)),
            "file_info": (PathArgs, lambda a: workspace.file_info(a.path)),
            "create_directory": (PathArgs, lambda a: workspace.create_directory(a.path)),
            "delete_file": (DeleteFileArgs, lambda a: workspace.delete_file(a.path, a.confirm)),
            "run_command": (RunCommandArgs, lambda a: workspace.run_command(a.command, a.args, a.timeout_ms)),
            "git_command": (
                GitCommandArgs,
                lambda a: workspace.git_command(a.subcommand, a.args, a.allow_destructive, a.timeout_ms),
            ),
        }

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._tools)

    def _error(self, tool: str, code: str, message: str) -> dict[str, str]:
        if code in SECURITY_CODES:
            self.workspace.log("security_violation", {"tool": tool, "code": code, "message": self.workspace.scrub(message)})
        self.workspace.log("tool_failed", {"tool": tool, "code": code})
        return {"error": message, "code": code}

    def dispatch(self, request: dict[str, Any]) -> dict[str, str]:
        """Run one tool request; never raises."""
        try:
            req = ToolRequest.model_validate(request)
        except ValidationError as e:
            return {"error": _validation_message("request", e), "code": "InvalidArguments"}

        tool = req.name
        entry = self._tools.get(tool)
        if entry is None:
            return {"error": f"Unknown tool: {tool}", "code": "UnknownTool"}
        args_model, handler = entry

        try:
            args = args_model.model_validate(req.arguments)
        except ValidationError as e:
            return {"error": _validation_message(tool, e), "code": "InvalidArguments"}

        self.workspace.log("tool_called", {"tool": tool})
        t0 = time.time()
        try:
            self.rate_limiter.check(self.workspace.run_id, tool)
            message = handler(args)
        except ToolguardError as e:
            return self._error(tool, e.code, e.message)
        except Exception as e:  # noqa: BLE001
            self.workspace.log(
                "internal_error",
                {
                    "tool": tool,
                    "exception": type(e).__name__,
                    "detail": redact_text(scrub_paths(str(e), self.workspace.project_root)),
                    "traceback": redact_text(
                        scrub_paths(traceback.format_exc(), self.workspace.project_root), max_len=2000
                    ),
                },
            )
            return {"error": GENERIC_ERROR, "code": "InternalError"}

        self.workspace.log("tool_succeeded", {"tool": tool, "duration_s": round(time.time() - t0, 3)})
        return {"ok": message}

    async def dispatch_async(self, request: dict[str, Any]) -> dict[str, str]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.dispatch, request)
