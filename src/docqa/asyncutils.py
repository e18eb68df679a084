"""Helpers for calling collaborators that may be sync or async."""

from __future__ import annotations

import inspect
from typing import Any


async def maybe_await(result: Any) -> Any:
    """Await result if it is awaitable."""

    if inspect.isawaitable(result):
        return await result
    return result
