"""
Utility helpers for safe data handling and timeout races.
"""
import asyncio
from typing import Any, Awaitable, TypeVar

T = TypeVar("T")


def safe_str(value: Any, default: str = "") -> str:
    """
    Safely convert value to string, handling None.

    Args:
        value: Any value to convert
        default: Default string if value is None

    Returns:
        String representation or default
    """
    if value is None:
        return default
    return str(value)


def safe_strip(value: Any) -> str:
    """Safely strip whitespace from a value, handling None."""
    if value is None:
        return ""
    return str(value).strip()


def safe_int(value: Any, default: int = 0) -> int:
    """
    Safely convert value to int, handling None and invalid values.

    Args:
        value: Any value to convert
        default: Default int if conversion fails

    Returns:
        Integer or default
    """
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


async def race_timeout(awaitable: Awaitable[T], seconds: float, label: str) -> T:
    """
    Await `awaitable`, giving up after `seconds`.

    First to settle wins. The underlying request is shielded, so a timeout
    does not cancel it; a late result is simply dropped.

    Raises:
        asyncio.TimeoutError: labelled with what we were waiting for
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=seconds)
    except asyncio.TimeoutError:
        # Keep a late failure from being reported as never retrieved.
        task.add_done_callback(_consume_result)
        raise asyncio.TimeoutError(f"Timeout ({seconds}s) waiting for {label}")


def _consume_result(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()
