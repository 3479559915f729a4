from __future__ import annotations

import json
import logging

from google.cloud import tasks_v2
from starlette.concurrency import run_in_threadpool

from alegi.config import Settings
from alegi.services.tasks.interface import TaskEnqueuer, internal_headers

logger = logging.getLogger(__name__)


class CloudTasksEnqueuer(TaskEnqueuer):
  """Creates a Cloud Tasks HTTP task targeting the internal worker trigger."""

  def __init__(self, settings: Settings) -> None:
    if not settings.cloud_tasks_queue_path:
      raise RuntimeError("ALEGI_CLOUD_TASKS_QUEUE_PATH is required for the gcp task provider.")
    if not settings.internal_service_url:
      raise RuntimeError("ALEGI_INTERNAL_SERVICE_URL is required for the gcp task provider.")
    self.settings = settings
    self.client = tasks_v2.CloudTasksClient()

  def build_task(self, job_id: str, queue_name: str) -> dict:
    headers = {"Content-Type": "application/json"}
    headers.update(internal_headers(self.settings.internal_service_name, self.settings.internal_service_secret))
    return {
      "http_request": {
        "http_method": tasks_v2.HttpMethod.POST,
        "url": f"{(self.settings.internal_service_url or '').rstrip('/')}/internal/tasks/process-job",
        "headers": headers,
        "body": json.dumps({"job_id": job_id, "queue_name": queue_name}).encode(),
      }
    }

  async def enqueue(self, job_id: str, queue_name: str) -> None:
    task = self.build_task(job_id, queue_name)
    response = await run_in_threadpool(self.client.create_task, request={"parent": self.settings.cloud_tasks_queue_path, "task": task})
    logger.info("Enqueued Cloud Task %s for job %s", response.name, job_id)
