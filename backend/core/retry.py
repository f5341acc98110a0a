"""
Bounded retry with reconnect for database calls.

Pooled connections behind a transaction-mode pooler occasionally fail with
"prepared statement already exists" or drop mid-query. ``safe_query`` resets
the engine's pool and retries such failures with jittered exponential backoff.
Anything else propagates on the first attempt.
"""
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Postgres SQLSTATEs: duplicate_prepared_statement, invalid_sql_statement_name
RECONNECT_SQLSTATES = {"42P05", "26000"}
CONNECTION_MARKERS = (
    "could not connect",
    "connection refused",
    "connection reset",
    "connection is closed",
    "server closed the connection",
    "bind message supplies",
)


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (exc, orig):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def is_reconnectable_error(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if _sqlstate(exc) in RECONNECT_SQLSTATES:
        return True
    message = str(exc).lower()
    if "prepared statement" in message and ("already exists" in message or "does not exist" in message):
        return True
    return any(marker in message for marker in CONNECTION_MARKERS)


def backoff(initial: float, max_wait: float, jitter: float):
    """Exponential wait from ``initial`` capped at ``max_wait``, plus up to ``jitter`` seconds of noise"""
    return wait_exponential(multiplier=initial, max=max_wait) + wait_random(0, jitter)


async def safe_query(
    fn: Callable[[], Awaitable[T]],
    *,
    engine: Optional[AsyncEngine] = None,
    attempts: int = 3,
    initial_wait: float = 0.5,
    max_wait: float = 5.0,
    jitter: float = 0.5,
) -> T:
    """
    Run ``fn`` and retry connection-class failures.

    Args:
        fn: zero-argument coroutine factory; called once per attempt
        engine: engine whose pool is disposed before each retry
        attempts: total attempts, including the first
        initial_wait, max_wait, jitter: backoff shape in seconds

    Returns:
        Whatever ``fn`` returns.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    async def _reconnect(retry_state) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            f"Database connection error, resetting pool "
            f"(attempt {retry_state.attempt_number}/{attempts}): {exc}"
        )
        if engine is not None:
            await engine.dispose()

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=backoff(initial_wait, max_wait, jitter),
        retry=retry_if_exception(is_reconnectable_error),
        before_sleep=_reconnect,
        reraise=True,
    ):
        with attempt:
            return await fn()
    raise RuntimeError("unreachable")  # pragma: no cover
