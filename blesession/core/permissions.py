"""Platform permission hooks consulted before scanning."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable

PermissionCheck = Callable[[], "bool | Awaitable[bool]"]


def always_granted() -> bool:
    """Permission check for platforms without a location gate on BLE scans."""
    return True


async def request_permission(check: PermissionCheck) -> bool:
    outcome = check()
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return bool(outcome)
