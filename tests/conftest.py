"""Global pytest configuration for hermetic test runs."""

from __future__ import annotations

import os


def pytest_sessionstart(session):  # noqa: ARG001
    # Never route approvals to a real webhook from a developer's environment.
    os.environ.pop("TOOLGUARD_APPROVAL_WEBHOOK_URL", None)

    # Tests construct their own configs; keep env overrides from leaking in.
    for key in [k for k in os.environ if k.startswith("TOOLGUARD_")]:
        os.environ.pop(key, None)
