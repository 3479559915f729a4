"""Exponential backoff helpers shared by queue retries and external-call retries."""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class BackoffPolicy:
  """delay(n) = min(base * 2**n, max_delay), n >= 0."""

  base_delay: float
  max_delay: float

  def __post_init__(self) -> None:
    if self.base_delay < 0 or self.max_delay < 0:
      raise ValueError("Backoff delays must not be negative.")
    if self.max_delay < self.base_delay:
      raise ValueError("max_delay must be greater than or equal to base_delay.")

  def delay(self, attempts: int) -> float:
    if attempts < 0:
      raise ValueError("attempts must be zero or positive.")
    # Cap the exponent so huge attempt counts never overflow float math.
    exponent = min(attempts, 64)
    return min(self.base_delay * (2**exponent), self.max_delay)

  def next_eligible_time(self, now: datetime, attempts: int) -> datetime:
    return now + timedelta(seconds=self.delay(attempts))


def jittered_delay(policy: BackoffPolicy, attempts: int, *, rng: Callable[[float, float], float] = random.uniform) -> float:
  """Apply +/-25% jitter to the policy delay, never exceeding max_delay."""
  delay = policy.delay(attempts)
  jitter = delay * 0.25
  return max(0.0, min(policy.max_delay, delay + rng(-jitter, jitter)))
