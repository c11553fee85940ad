"""Retry logic for rate-limited generation calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

DEFAULT_DELAYS: tuple[float, ...] = (5, 20, 50)


def is_rate_limit_error(exc: BaseException) -> bool:
  """Return True for 429 and quota errors, whatever SDK raised them."""
  if getattr(exc, "status_code", None) == 429:
    return True
  error_msg = str(exc)
  is_quota_error = "Resource Exhausted" in error_msg or "Quota Exceeded" in error_msg or "insufficient_quota" in error_msg
  is_rate_limit = "429" in error_msg or "Too Many Requests" in error_msg or "rate limit" in error_msg.lower()
  return is_quota_error or is_rate_limit


async def retry_with_backoff(func: Callable[..., Awaitable[T]], *args, delays: Sequence[float] = DEFAULT_DELAYS, **kwargs) -> T:
  """
  Execute a coroutine function, retrying only 429/quota errors.

  Delays default to 5s, 20s, 50s before the final attempt.
  """
  for attempt, delay in enumerate(delays):
    try:
      return await func(*args, **kwargs)
    except Exception as e:
      if not is_rate_limit_error(e):
        # Non-retryable error, raise immediately
        raise
      logger.warning("Retry attempt %d/%d needed. Error: %s. Retrying in %ss...", attempt + 1, len(delays), e, delay)
      await asyncio.sleep(delay)

  # Final attempt
  return await func(*args, **kwargs)
