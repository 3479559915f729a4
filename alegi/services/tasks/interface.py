from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class TaskEnqueuer(Protocol):
  """Interface for waking a worker after a job is enqueued."""

  async def enqueue(self, job_id: str, queue_name: str) -> None:
    """Ask the worker trigger to process the job."""
    ...


class NullTaskEnqueuer(TaskEnqueuer):
  """Cron-driven hosts pick jobs up on the next scheduled tick."""

  async def enqueue(self, job_id: str, queue_name: str) -> None:
    logger.debug("No task dispatcher configured; job %s on %s waits for the next worker tick", job_id, queue_name)


def internal_headers(service_name: str, service_secret: str | None) -> dict[str, str]:
  """Header pair the internal worker trigger authenticates."""
  if not service_secret:
    raise RuntimeError("ALEGI_INTERNAL_SERVICE_SECRET is not configured.")
  return {"x-internal-service": service_name, "x-service-secret": service_secret}
