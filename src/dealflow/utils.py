"""Small helpers shared by the engines."""

import inspect
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


async def maybe_await(value: Any) -> Any:
    """Resolve values returned by callbacks that may be sync or async."""
    if inspect.isawaitable(value):
        return await value
    return value


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
