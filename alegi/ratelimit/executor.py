"""Throttled external calls: admission, per-call timeout and transient retries."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from alegi.core.errors import TransientExternalError
from alegi.ratelimit.limiter import RateLimiter, Sleep
from alegi.utils.backoff import BackoffPolicy, jittered_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
  max_retries: int
  backoff: BackoffPolicy


class ThrottledExecutor:
  """Run external calls through the rate limiter with bounded retries."""

  def __init__(
    self,
    limiter: RateLimiter,
    *,
    retry: RetryPolicy,
    timeout_seconds: float,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[float, float], float] = random.uniform,
  ) -> None:
    self._limiter = limiter
    self._retry = retry
    self._timeout_seconds = timeout_seconds
    self._sleep = sleep
    self._rng = rng

  @property
  def limiter(self) -> RateLimiter:
    return self._limiter

  async def call(self, resource_key: str, func: Callable[[], Awaitable[T]], *, payload_text: str | None = None, operation: str = "external call") -> T:
    """Await func() once admitted; transient failures retry until max_retries, then re-raise."""
    attempt = 0
    while True:
      await self._limiter.acquire(resource_key, payload_text)
      try:
        return await asyncio.wait_for(func(), timeout=self._timeout_seconds)
      except TimeoutError as exc:
        error = TransientExternalError(resource_key, f"{operation} timed out after {self._timeout_seconds:.0f}s")
        error.__cause__ = exc
      except TransientExternalError as exc:
        error = exc

      if attempt >= self._retry.max_retries:
        logger.error("%s on %s failed after %s attempts: %s", operation, resource_key, attempt + 1, error)
        raise error
      delay = jittered_delay(self._retry.backoff, attempt, rng=self._rng)
      attempt += 1
      logger.warning("%s on %s failed (%s); retry %s/%s in %.2fs", operation, resource_key, error, attempt, self._retry.max_retries, delay)
      await self._sleep(delay)
