"""Async retry with exponential backoff, and log-safe error strings."""

import asyncio
import functools
import re
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar
import structlog

log = structlog.get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

# Push tokens and access tokens must never reach the logs
_SENSITIVE_PATTERNS = re.compile(
    r"((?:token|api_?key|secret|password|authorization)[=:]\s*)[^&\s'\",)]+"
    r"|ExponentPushToken\[[^\]]+\]",
    re.IGNORECASE,
)


def sanitize_error(error: str) -> str:
    """Strip push tokens and credentials from error messages."""
    return _SENSITIVE_PATTERNS.sub(
        lambda m: f"{m.group(1)}[REDACTED]" if m.group(1) else "ExponentPushToken[REDACTED]",
        error,
    )


def backoff_delays(max_retries: int, base_delay: float, max_delay: float) -> list[float]:
    """Sleep before each retry: base, 2*base, 4*base... capped at max_delay."""
    return [min(base_delay * (2 ** n), max_delay) for n in range(max_retries)]


def async_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Retry an async call on the given exceptions with exponential backoff.

    The last exception is re-raised once the retries are used up.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            for attempt, delay in enumerate(backoff_delays(max_retries, base_delay, max_delay), 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    log.warning(
                        "retry_scheduled",
                        func=func.__qualname__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=delay,
                        error=sanitize_error(str(e)),
                    )
                await asyncio.sleep(delay)
            return await func(*args, **kwargs)

        return wrapper

    return decorator
