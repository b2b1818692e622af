"""Approval flow for destructive commands.

Provides CLI-based approval prompts and webhook support for external approval systems.
"""

from __future__ import annotations

import sys
import time
from typing import Any

import httpx

from .config import ApprovalConfig
from .core.redaction import redact_text
from .types import ApprovalRequest


class ApprovalHandler:
    """Handles approval requests for destructive commands."""

    def __init__(self, interactive: bool = True):
        """
        Initialize approval handler.

        Args:
            interactive: If True, use CLI prompts; if False, auto-reject
        """
        self.interactive = interactive

    async def request_approval(self, request: ApprovalRequest) -> bool:
        """
        Request approval for a destructive command.

        Args:
            request: The refused command and why it was refused

        Returns:
            True if approved, False if rejected
        """
        if self.interactive:
            return self._cli_prompt(request)
        # Non-interactive mode: auto-reject
        return False

    def _cli_prompt(self, request: ApprovalRequest) -> bool:
        print("\n" + "=" * 60)
        print("APPROVAL REQUIRED")
        print("=" * 60)
        print()
        print(f"Command: {request.command_line}")
        print(f"Reason:  {request.reason}")
        print()

        while True:
            response = input("Run this destructive command? [y/N/q(uit)]: ").strip().lower()

            if response in ["y", "yes"]:
                print("✓ Approved")
                return True
            elif response in ["n", "no", ""]:
                print("✗ Rejected")
                return False
            elif response in ["q", "quit"]:
                print("Exiting approval process")
                sys.exit(0)
            else:
                print("Invalid response. Please enter y(es), n(o), or q(uit).")


def _coerce_approved(approved: Any) -> bool:
    if approved is True:
        return True
    if approved is False or approved is None:
        return False
    if isinstance(approved, str):
        return approved.strip().lower() in {"true", "1", "yes", "y", "approve", "approved"}
    if isinstance(approved, int):
        return approved == 1
    return False


class WebhookApprovalHandler(ApprovalHandler):
    """
    Approval handler that sends requests to external webhook.

    The webhook answers synchronously with ``{"approved": true|false}``.
    Any transport error, non-200 status or malformed body is a rejection.
    """

    def __init__(
        self,
        webhook_url: str,
        headers: dict[str, str] | None = None,
        timeout_seconds: int = 300,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(interactive=False)
        self.webhook_url = webhook_url
        self.headers = headers or {}
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def request_approval(self, request: ApprovalRequest) -> bool:
        payload = {
            "timestamp": time.time(),
            "command": {
                **request.to_dict(),
                "args": [redact_text(a) for a in request.args],
                "command": redact_text(request.command_line),
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                res = await client.post(
                    self.webhook_url,
                    json=payload,
                    headers=self.headers,
                )
        except httpx.HTTPError:
            # Fail-closed on network errors/timeouts.
            return False

        if res.status_code != 200:
            return False

        try:
            data = res.json()
        except ValueError:
            return False
        if not isinstance(data, dict):
            return False

        return _coerce_approved(data.get("approved", False))


class AlwaysApproveHandler(ApprovalHandler):
    """Approval handler that always approves (for testing/CI)."""

    def __init__(self):
        super().__init__(interactive=False)

    async def request_approval(self, request: ApprovalRequest) -> bool:
        """Always approve."""
        return True


class AlwaysRejectHandler(ApprovalHandler):
    """Approval handler that always rejects (for dry-run mode)."""

    def __init__(self):
        super().__init__(interactive=False)

    async def request_approval(self, request: ApprovalRequest) -> bool:
        """Always reject."""
        return False


def handler_from_config(config: ApprovalConfig, interactive: bool = True) -> ApprovalHandler:
    """Webhook handler when a URL is configured, else the CLI prompt."""
    webhook = config.webhook
    if webhook.url:
        return WebhookApprovalHandler(
            webhook_url=webhook.url,
            headers=webhook.headers,
            timeout_seconds=webhook.timeout_seconds,
        )
    return ApprovalHandler(interactive=interactive)
