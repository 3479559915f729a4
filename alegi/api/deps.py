"""Shared FastAPI dependencies for repositories, the queue and the notifier."""

from __future__ import annotations

from fastapi import Depends

from alegi.config import Settings, get_settings
from alegi.jobs.factory import build_handler_registry, build_job_queue
from alegi.jobs.queue import JobQueue
from alegi.jobs.worker import JobHandlerRegistry
from alegi.notifications.contracts import StatusChannel
from alegi.notifications.factory import get_status_channel
from alegi.notifications.service import CaseStatusNotifier
from alegi.services.case_events import CaseEventService
from alegi.services.tasks.factory import build_task_enqueuer
from alegi.services.tasks.interface import TaskEnqueuer
from alegi.storage.cases_repo import CasesRepository
from alegi.storage.jobs_repo import JobsRepository
from alegi.storage.postgres_cases_repo import PostgresCasesRepository
from alegi.storage.postgres_jobs_repo import PostgresJobsRepository
from alegi.storage.postgres_rate_windows_repo import PostgresRateWindowRepository
from alegi.storage.rate_windows_repo import RateWindowRepository


def get_jobs_repo() -> JobsRepository:
  return PostgresJobsRepository()


def get_cases_repo() -> CasesRepository:
  return PostgresCasesRepository()


def get_rate_windows_repo() -> RateWindowRepository:
  return PostgresRateWindowRepository()


def get_job_queue(settings: Settings = Depends(get_settings), repo: JobsRepository = Depends(get_jobs_repo)) -> JobQueue:  # noqa: B008
  return build_job_queue(settings, repo)


def get_notifier(cases_repo: CasesRepository = Depends(get_cases_repo), channel: StatusChannel = Depends(get_status_channel)) -> CaseStatusNotifier:  # noqa: B008
  return CaseStatusNotifier(cases_repo=cases_repo, channel=channel)


def get_case_event_service(
  settings: Settings = Depends(get_settings),  # noqa: B008
  queue: JobQueue = Depends(get_job_queue),  # noqa: B008
  notifier: CaseStatusNotifier = Depends(get_notifier),  # noqa: B008
  cases_repo: CasesRepository = Depends(get_cases_repo),  # noqa: B008
) -> CaseEventService:
  return CaseEventService(queue=queue, notifier=notifier, cases_repo=cases_repo, queue_name=settings.queue_name)


def get_handler_registry(
  settings: Settings = Depends(get_settings),  # noqa: B008
  cases_repo: CasesRepository = Depends(get_cases_repo),  # noqa: B008
  rate_windows_repo: RateWindowRepository = Depends(get_rate_windows_repo),  # noqa: B008
  channel: StatusChannel = Depends(get_status_channel),  # noqa: B008
) -> JobHandlerRegistry:
  """Built per request so each worker invocation starts from fresh clients."""
  return build_handler_registry(settings, cases_repo=cases_repo, rate_windows_repo=rate_windows_repo, channel=channel)


def get_task_enqueuer(settings: Settings = Depends(get_settings)) -> TaskEnqueuer:  # noqa: B008
  return build_task_enqueuer(settings)
