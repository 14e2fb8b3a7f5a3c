"""
Retry with exponential backoff for LLM calls.

Quota / rate-limit errors wait for the server-suggested delay (or 60s),
capped at 5 minutes. Transient errors (503, overload, dropped connections,
timeouts) back off exponentially with jitter. Everything else is raised
on the first failure.
"""

import asyncio
import random
import re
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from labsync.logging_config import get_logger

logger = get_logger("retry")

T = TypeVar("T")

DEFAULT_QUOTA_DELAY = 60.0
MAX_QUOTA_DELAY = 300.0
JITTER_RATIO = 0.3

_RETRY_AFTER_RE = re.compile(r"retry in ([\d.]+)s", re.IGNORECASE)
_TRANSIENT_CODES = {"ECONNRESET", "ETIMEDOUT"}


def error_status(error: BaseException) -> Optional[int]:
    """Numeric HTTP status attached to an error, if any."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def _message(error: BaseException) -> str:
    return str(getattr(error, "message", None) or error).lower()


def is_quota_error(error: BaseException) -> bool:
    """429, or a message mentioning quota / rate limit."""
    if error_status(error) == 429:
        return True
    message = _message(error)
    return "quota" in message or "rate limit" in message


def is_transient_error(error: BaseException) -> bool:
    """503, provider overload, dropped connections and timeouts."""
    if error_status(error) == 503:
        return True
    if isinstance(error, (asyncio.TimeoutError, ConnectionError, httpx.TimeoutException, httpx.NetworkError)):
        return True
    if getattr(error, "code", None) in _TRANSIENT_CODES:
        return True
    message = _message(error)
    return "overloaded" in message or "service unavailable" in message


def parse_retry_after(error: BaseException) -> Optional[float]:
    """Seconds from a 'retry in N s' hint in the error message."""
    match = _RETRY_AFTER_RE.search(str(getattr(error, "message", None) or error))
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def quota_delay(error: BaseException) -> float:
    hinted = parse_retry_after(error)
    delay = hinted if hinted is not None else DEFAULT_QUOTA_DELAY
    return min(delay, MAX_QUOTA_DELAY)


def backoff_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    delay = min(initial_delay * (2 ** attempt), max_delay)
    return delay + random.uniform(0, JITTER_RATIO * delay)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation`, retrying up to `max_retries` more times on retryable errors.

    Args:
        operation: Zero-argument coroutine function to call
        max_retries: Retries after the first attempt
        initial_delay: Base delay in seconds for transient errors
        max_delay: Cap in seconds for transient backoff (jitter added on top)
        sleep: Awaitable sleep, replaced in tests

    Returns:
        The operation's result

    Raises:
        The last error, once it is permanent or retries are exhausted
    """
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            quota = is_quota_error(e)
            transient = not quota and is_transient_error(e)

            if not (quota or transient) or attempt == max_retries:
                if quota:
                    hinted = parse_retry_after(e)
                    if hinted is not None:
                        logger.warning(f"API quota exceeded. Provider asks to wait {round(hinted)}s")
                    else:
                        logger.warning("API quota exceeded. Wait for the quota window to reset")
                raise

            delay = quota_delay(e) if quota else backoff_delay(attempt, initial_delay, max_delay)
            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed. Retrying in {round(delay)}s... "
                + ("(quota limit, waiting longer)" if quota else str(e)[:100])
            )
            await sleep(delay)

    raise RuntimeError("Max retries exceeded")
