"""Error taxonomy for sandboxed tool operations.

Every error is recoverable by the calling agent: it carries a stable ``code``
and a message that is safe to hand back (it only names paths, flags and edit
indexes the caller supplied).
"""

from __future__ import annotations


class ToolguardError(Exception):
    """Base class for all sandbox errors."""

    code = "Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class PathTraversalError(ToolguardError):
    code = "PathTraversal"


class SymlinkEscapeError(ToolguardError):
    code = "SymlinkEscape"


class NotFoundError(ToolguardError):
    code = "NotFound"


class ReadBeforeWriteRequiredError(ToolguardError):
    code = "ReadBeforeWriteRequired"


class NoOpEditError(ToolguardError):
    code = "NoOpEdit"


class NoMatchError(ToolguardError):
    code = "NoMatch"


class AmbiguousMatchError(ToolguardError):
    code = "AmbiguousMatch"

    def __init__(self, count: int, message: str | None = None):
        super().__init__(
            message
            or (
                f"Found {count} occurrences of old_string. Use replace_all: true "
                "to replace all, or provide a more specific string."
            )
        )
        self.count = count


class IntegrityError(ToolguardError):
    code = "IntegrityError"


class BatchFailedError(ToolguardError):
    code = "BatchFailed"

    def __init__(self, index: int, inner: ToolguardError):
        super().__init__(f"Edit {index} failed: {inner}")
        self.index = index
        self.inner = inner


class DisallowedError(ToolguardError):
    code = "Disallowed"


class DestructiveRefusedError(ToolguardError):
    code = "DestructiveRefused"


class TimedOutError(ToolguardError):
    code = "TimedOut"

    def __init__(self, timeout_s: float, message: str | None = None):
        super().__init__(message or f"Command timed out after {int(timeout_s * 1000)}ms")
        self.timeout_s = timeout_s


class NotTextError(ToolguardError):
    code = "NotText"


class CapExceededError(ToolguardError):
    code = "CapExceeded"


class RateLimitedError(ToolguardError):
    code = "RateLimited"

    def __init__(self, tool: str, retry_after_s: float):
        super().__init__(f"Rate limit exceeded for {tool}; retry after {retry_after_s:.1f}s")
        self.tool = tool
        self.retry_after_s = retry_after_s
