"""Storage interface for shared rate-limit windows."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from alegi.ratelimit.windows import AdmissionRequest, WindowState


class RateWindowRepository(Protocol):
  """Cross-invocation window state; admission is an atomic check-and-record against the last minute of calls."""

  async def try_admit(self, resource_key: str, request: AdmissionRequest, *, now: datetime) -> WindowState:
    """Record the call and return the updated window, or raise RateLimitBackpressure with the wait."""

  async def get_window(self, resource_key: str) -> WindowState | None:
    """Return the stored window for a resource, if any."""
