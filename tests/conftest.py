"""Test configuration for importing the application package."""

from __future__ import annotations

import os

# Settings are read once at import time; the secrets must exist before the app is imported.
os.environ.setdefault("ALEGI_ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("ALEGI_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ALEGI_INTERNAL_SERVICE_SECRET", "test-service-secret")
os.environ.setdefault("ALEGI_INTERNAL_SERVICE_NAME", "alegi-backend")

from collections.abc import Sequence  # noqa: E402
from dataclasses import dataclass  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from alegi.api.deps import get_cases_repo, get_handler_registry, get_jobs_repo, get_task_enqueuer  # noqa: E402
from alegi.cases.models import CaseRecord  # noqa: E402
from alegi.core.security import Principal, get_current_principal  # noqa: E402
from alegi.jobs.queue import JobQueue  # noqa: E402
from alegi.jobs.worker import CaseJobHandler, JobHandlerRegistry  # noqa: E402
from alegi.main import app  # noqa: E402
from alegi.notifications.factory import get_status_channel  # noqa: E402
from alegi.notifications.service import CaseStatusNotifier  # noqa: E402
from alegi.pipeline.contracts import CaseLawSource  # noqa: E402
from alegi.pipeline.graph import CASE_PIPELINE  # noqa: E402
from alegi.pipeline.orchestrator import PipelineOrchestrator  # noqa: E402
from alegi.pipeline.stages import CaseStages  # noqa: E402
from alegi.services.case_events import CaseEventService  # noqa: E402
from alegi.utils.backoff import BackoffPolicy  # noqa: E402
from tests.fakes import (  # noqa: E402
  FakeCaseLawSource,
  FakeClock,
  FakeLLM,
  InMemoryCasesRepo,
  InMemoryJobsRepo,
  RecordingChannel,
  RecordingEnqueuer,
  canned_llm_responses,
)

QUEUE = "case-processing"
OWNER = "user-1"


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepo:
  return InMemoryJobsRepo()


@pytest.fixture
def cases_repo() -> InMemoryCasesRepo:
  return InMemoryCasesRepo()


@pytest.fixture
def channel() -> RecordingChannel:
  return RecordingChannel()


@pytest.fixture
def job_queue(jobs_repo: InMemoryJobsRepo, clock: FakeClock) -> JobQueue:
  return JobQueue(jobs_repo, backoff=BackoffPolicy(base_delay=2, max_delay=300), default_max_attempts=3, clock=clock)


@pytest.fixture
def notifier(cases_repo: InMemoryCasesRepo, channel: RecordingChannel, clock: FakeClock) -> CaseStatusNotifier:
  return CaseStatusNotifier(cases_repo=cases_repo, channel=channel, clock=clock)


@pytest.fixture
def event_service(job_queue: JobQueue, notifier: CaseStatusNotifier, cases_repo: InMemoryCasesRepo, clock: FakeClock) -> CaseEventService:
  return CaseEventService(queue=job_queue, notifier=notifier, cases_repo=cases_repo, queue_name=QUEUE, clock=clock)


@pytest.fixture
def sample_case(cases_repo: InMemoryCasesRepo) -> CaseRecord:
  return cases_repo.add_case(
    CaseRecord(
      id="case-1",
      user_id=OWNER,
      case_name="Lee v. Acme Corp",
      case_type="Employment",
      jurisdiction="California",
      case_narrative="Jordan was terminated two weeks after reporting payroll fraud to HR.",
    )
  )


def build_orchestrator(cases_repo: InMemoryCasesRepo, *, llm: FakeLLM | None = None, sources: Sequence[CaseLawSource] | None = None, clock: FakeClock | None = None) -> PipelineOrchestrator:
  """Real stage handlers over fake external services."""
  stages = CaseStages(
    llm=llm or FakeLLM(canned_llm_responses()),
    cases_repo=cases_repo,
    case_law_sources=sources if sources is not None else [FakeCaseLawSource("opinions", [{"case_name": "Smith v. Acme", "url": "/opinion/1/", "opinion_id": 1, "snippet": "retaliation"}])],
    model_for=lambda stage: "gpt-4o-mini",
  )
  if clock is None:
    return PipelineOrchestrator(graph=CASE_PIPELINE, handlers=stages.handlers(), cases_repo=cases_repo)
  return PipelineOrchestrator(graph=CASE_PIPELINE, handlers=stages.handlers(), cases_repo=cases_repo, clock=clock)


@pytest.fixture
def orchestrator(cases_repo: InMemoryCasesRepo, clock: FakeClock) -> PipelineOrchestrator:
  return build_orchestrator(cases_repo, clock=clock)


@pytest.fixture
def registry(cases_repo: InMemoryCasesRepo, orchestrator: PipelineOrchestrator, notifier: CaseStatusNotifier) -> JobHandlerRegistry:
  return JobHandlerRegistry({QUEUE: CaseJobHandler(cases_repo=cases_repo, orchestrator=orchestrator, notifier=notifier)})


@dataclass
class AppOverrides:
  jobs_repo: InMemoryJobsRepo
  cases_repo: InMemoryCasesRepo
  channel: RecordingChannel
  enqueuer: RecordingEnqueuer
  registry: JobHandlerRegistry


@pytest.fixture
def app_overrides(jobs_repo: InMemoryJobsRepo, cases_repo: InMemoryCasesRepo, channel: RecordingChannel, registry: JobHandlerRegistry) -> AppOverrides:
  overrides = AppOverrides(jobs_repo=jobs_repo, cases_repo=cases_repo, channel=channel, enqueuer=RecordingEnqueuer(), registry=registry)
  app.dependency_overrides[get_jobs_repo] = lambda: overrides.jobs_repo
  app.dependency_overrides[get_cases_repo] = lambda: overrides.cases_repo
  app.dependency_overrides[get_status_channel] = lambda: overrides.channel
  app.dependency_overrides[get_task_enqueuer] = lambda: overrides.enqueuer
  app.dependency_overrides[get_handler_registry] = lambda: overrides.registry
  app.dependency_overrides[get_current_principal] = lambda: Principal(user_id=OWNER, claims={"uid": OWNER})
  yield overrides
  app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app_overrides: AppOverrides):
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client


# Force anyio to use asyncio
@pytest.fixture
def anyio_backend():
  return "asyncio"
