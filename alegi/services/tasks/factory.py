from __future__ import annotations

from alegi.config import Settings
from alegi.services.tasks.interface import NullTaskEnqueuer, TaskEnqueuer


def build_task_enqueuer(settings: Settings) -> TaskEnqueuer:
  """Factory for the configured worker dispatcher."""
  if settings.task_service_provider == "gcp":
    from alegi.services.tasks.gcp import CloudTasksEnqueuer

    return CloudTasksEnqueuer(settings)
  if settings.task_service_provider == "local-http":
    from alegi.services.tasks.local import LocalHttpEnqueuer

    return LocalHttpEnqueuer(settings)
  return NullTaskEnqueuer()
