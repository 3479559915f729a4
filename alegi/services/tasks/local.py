from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from alegi.config import Settings
from alegi.services.tasks.interface import TaskEnqueuer, internal_headers

logger = logging.getLogger(__name__)


class LocalHttpEnqueuer(TaskEnqueuer):
  """POSTs the job id to the internal worker trigger."""

  def __init__(self, settings: Settings) -> None:
    self.settings = settings

  def _should_use_asgi_transport(self, base_url: str) -> bool:
    parsed = urlparse(base_url)
    hostname = (parsed.hostname or "").lower()
    return hostname in {"localhost", "127.0.0.1", "::1", "0.0.0.0"}

  def _build_client(self, base_url: str) -> httpx.AsyncClient:
    # Local development calls the app in-process and never trusts proxy variables.
    if self._should_use_asgi_transport(base_url):
      from alegi.main import app

      return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=base_url, trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  async def enqueue(self, job_id: str, queue_name: str) -> None:
    base_url = self.settings.internal_service_url
    if not base_url:
      raise RuntimeError("ALEGI_INTERNAL_SERVICE_URL is required for the local-http task provider.")

    url = f"{base_url.rstrip('/')}/internal/tasks/process-job"
    headers = internal_headers(self.settings.internal_service_name, self.settings.internal_service_secret)
    try:
      async with self._build_client(base_url) as client:
        logger.info("Dispatching job %s to %s", job_id, url)
        # The trigger runs the pipeline synchronously; allow a long deadline.
        response = await client.post(url, json={"job_id": job_id, "queue_name": queue_name}, headers=headers, timeout=900.0)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      logger.error("Worker trigger returned %s for job %s: %s", exc.response.status_code, job_id, exc.response.text)
      raise
    except httpx.RequestError as exc:
      logger.error("Failed to reach worker trigger for job %s: %s", job_id, exc)
      raise
