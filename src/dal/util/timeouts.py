import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from common.errors import QueryTimeoutError

T = TypeVar("T")
logger = logging.getLogger(__name__)

CancelHook = Callable[[], Optional[Awaitable[None]]]


def _limit_enabled(timeout_seconds: Optional[float]) -> bool:
    return bool(timeout_seconds) and timeout_seconds > 0


async def _cancel_in_flight(cancel: CancelHook, provider: str, operation_name: str) -> None:
    try:
        pending = cancel()
        if inspect.isawaitable(pending):
            await pending
    except Exception as exc:
        logger.warning(
            "Could not cancel %s %s after timeout: %s",
            provider,
            operation_name,
            exc,
            extra={"event": "statement_cancel_failed", "provider": provider},
        )


async def run_with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: Optional[float],
    cancel: Optional[CancelHook] = None,
    *,
    provider: str = "unknown",
    operation_name: str = "statement",
) -> T:
    """Run one statement under the configured statement timeout.

    `operation` is a factory so the awaitable is only created when it will be
    awaited. A timeout of None or <= 0 disables the limit. When the limit
    expires the `cancel` hook (sync or async) runs first, then
    QueryTimeoutError is raised with the original timeout chained.
    """
    if not _limit_enabled(timeout_seconds):
        return await operation()

    try:
        return await asyncio.wait_for(operation(), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        if cancel is not None:
            await _cancel_in_flight(cancel, provider, operation_name)
        raise QueryTimeoutError(provider, operation_name, timeout_seconds) from exc
