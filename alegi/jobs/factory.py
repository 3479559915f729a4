"""Wiring of the queue, rate limiter, pipeline and worker from settings."""

from __future__ import annotations

import logging

from alegi.config import Settings
from alegi.jobs.queue import JobQueue
from alegi.jobs.worker import CaseJobHandler, JobHandlerRegistry
from alegi.notifications.contracts import StatusChannel
from alegi.notifications.service import CaseStatusNotifier
from alegi.pipeline.graph import CASE_PIPELINE
from alegi.pipeline.orchestrator import PipelineOrchestrator
from alegi.pipeline.stages import CaseStages
from alegi.ratelimit.executor import RetryPolicy, ThrottledExecutor
from alegi.ratelimit.limiter import RateLimiter
from alegi.services.courtlistener import CourtListenerClient, CourtListenerSource
from alegi.services.documents import DocumentExtractor
from alegi.services.llm import LLMClient
from alegi.storage.cases_repo import CasesRepository
from alegi.storage.jobs_repo import JobsRepository
from alegi.storage.rate_windows_repo import RateWindowRepository
from alegi.utils.backoff import BackoffPolicy

logger = logging.getLogger(__name__)


def build_job_queue(settings: Settings, repo: JobsRepository) -> JobQueue:
  backoff = BackoffPolicy(base_delay=settings.queue_base_delay_seconds, max_delay=settings.queue_max_delay_seconds)
  return JobQueue(repo, backoff=backoff, default_max_attempts=settings.queue_max_attempts)


def build_throttled_executor(settings: Settings, repo: RateWindowRepository) -> ThrottledExecutor:
  limiter = RateLimiter(repo, limit_for=settings.rate_limit_for, characters_per_token=settings.characters_per_token, min_interval=settings.min_call_interval_seconds)
  retry = RetryPolicy(max_retries=settings.external_max_retries, backoff=BackoffPolicy(base_delay=settings.external_retry_base_seconds, max_delay=settings.external_retry_max_seconds))
  return ThrottledExecutor(limiter, retry=retry, timeout_seconds=settings.external_call_timeout_seconds)


def build_orchestrator(settings: Settings, *, cases_repo: CasesRepository, executor: ThrottledExecutor) -> PipelineOrchestrator:
  """Assemble the case pipeline against the live external services."""
  llm = LLMClient(executor=executor, api_key=settings.openai_api_key, base_url=settings.openai_base_url)
  courtlistener = CourtListenerClient(executor=executor, base_url=settings.courtlistener_base_url, api_key=settings.courtlistener_api_key, timeout_seconds=settings.courtlistener_timeout_seconds)
  sources = [CourtListenerSource(courtlistener, name="opinions", search_type="o"), CourtListenerSource(courtlistener, name="dockets", search_type="r")]
  extractor = None
  if settings.document_extraction_url:
    extractor = DocumentExtractor(executor=executor, endpoint=settings.document_extraction_url, api_key=settings.document_extraction_api_key)
  else:
    logger.warning("ALEGI_DOCUMENT_EXTRACTION_URL not set; documents without stored text are skipped.")
  stages = CaseStages(llm=llm, cases_repo=cases_repo, case_law_sources=sources, model_for=settings.model_for, opinion_fetcher=courtlistener, extractor=extractor)
  return PipelineOrchestrator(graph=CASE_PIPELINE, handlers=stages.handlers(), cases_repo=cases_repo)


def build_handler_registry(settings: Settings, *, cases_repo: CasesRepository, rate_windows_repo: RateWindowRepository, channel: StatusChannel) -> JobHandlerRegistry:
  executor = build_throttled_executor(settings, rate_windows_repo)
  orchestrator = build_orchestrator(settings, cases_repo=cases_repo, executor=executor)
  notifier = CaseStatusNotifier(cases_repo=cases_repo, channel=channel)
  return JobHandlerRegistry({settings.queue_name: CaseJobHandler(cases_repo=cases_repo, orchestrator=orchestrator, notifier=notifier)})
