"""Adaptive rate limiter: waits for window capacity instead of rejecting calls."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from alegi.config import RateLimit
from alegi.core.errors import RateLimitBackpressure
from alegi.ratelimit.windows import AdmissionRequest, WindowState
from alegi.storage.rate_windows_repo import RateWindowRepository

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def _utc_now() -> datetime:
  return datetime.now(UTC)


class RateLimiter:
  """Gate outbound calls per resource key using shared rolling one-minute windows."""

  def __init__(
    self,
    repo: RateWindowRepository,
    *,
    limit_for: Callable[[str], RateLimit],
    characters_per_token: int = 4,
    min_interval: float = 0.0,
    clock: Callable[[], datetime] = _utc_now,
    sleep: Sleep = asyncio.sleep,
  ) -> None:
    if characters_per_token <= 0:
      raise ValueError("characters_per_token must be a positive integer.")
    self._repo = repo
    self._limit_for = limit_for
    self._characters_per_token = characters_per_token
    self._min_interval = min_interval
    self._clock = clock
    self._sleep = sleep

  def estimate_tokens(self, payload: str | None) -> int:
    """Token cost guess from payload size; exact usage is only known after the call."""
    if not payload:
      return 0
    return math.ceil(len(payload) / self._characters_per_token)

  async def acquire(self, resource_key: str, payload: str | None = None, *, tokens: int | None = None) -> WindowState:
    """Block until the call fits in the resource's window, then record it."""
    limit = self._limit_for(resource_key)
    estimate = self.estimate_tokens(payload) if tokens is None else tokens
    request = AdmissionRequest(rpm=limit.rpm, tpm=limit.tpm, tokens=estimate, min_interval=self._min_interval)
    waited = 0.0
    while True:
      try:
        state = await self._repo.try_admit(resource_key, request, now=self._clock())
      except RateLimitBackpressure as pressure:
        logger.debug("Rate window full for %s; waiting %.2fs", resource_key, pressure.retry_after)
        await self._sleep(pressure.retry_after)
        waited += pressure.retry_after
        continue
      if waited:
        logger.info("Admitted %s call after waiting %.2fs (requests=%s/%s tokens=%s/%s)", resource_key, waited, state.request_count, limit.rpm, state.token_count, limit.tpm)
      return state
