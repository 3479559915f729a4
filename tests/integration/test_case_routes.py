from __future__ import annotations

import pytest
from httpx import AsyncClient

from alegi.cases.models import CaseRecord
from alegi.core.security import get_current_principal
from alegi.jobs.queue import JobQueue
from alegi.jobs.worker import JobHandlerRegistry, process_next_job
from alegi.main import app
from alegi.services.case_events import MANUAL_PRIORITY, CaseEventService
from tests.conftest import QUEUE, AppOverrides
from tests.fakes import START


@pytest.mark.anyio
async def test_status_reports_failure_with_aliases(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  app_overrides.cases_repo.add_case(CaseRecord(id="case-9", user_id="user-1", processing_status="failed", processing_error="outcome_prediction: timeout", last_ai_update=START))

  response = await async_client.get("/v1/cases/case-9/status")
  assert response.status_code == 200
  assert response.json() == {"status": "failed", "lastUpdate": "2026-01-05T09:00:00Z", "results": None, "error": "outcome_prediction: timeout", "canRetrigger": True}


@pytest.mark.anyio
async def test_completed_case_reports_headline_results(
  async_client: AsyncClient, app_overrides: AppOverrides, event_service: CaseEventService, job_queue: JobQueue, registry: JobHandlerRegistry, sample_case: CaseRecord
) -> None:
  await event_service.enqueue_case(sample_case, source="first_party", trigger="webhook_insert")
  await process_next_job(job_queue, registry, QUEUE)

  body = (await async_client.get(f"/v1/cases/{sample_case.id}/status")).json()
  assert body["status"] == "completed"
  assert body["canRetrigger"] is True
  assert body["error"] is None
  assert body["results"]["outcome_prediction_score"] == 72
  assert body["results"]["complexity_score"] == 100


@pytest.mark.anyio
async def test_other_users_cases_are_not_found(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  app_overrides.cases_repo.add_case(CaseRecord(id="case-x", user_id="someone-else"))

  for response in (await async_client.get("/v1/cases/case-x/status"), await async_client.post("/v1/cases/case-x/reprocess")):
    assert response.status_code == 404
    assert response.json()["error"] == "case_not_found"
  assert app_overrides.jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_reprocess_enqueues_a_priority_job(async_client: AsyncClient, app_overrides: AppOverrides, sample_case: CaseRecord) -> None:
  response = await async_client.post(f"/v1/cases/{sample_case.id}/reprocess")
  assert response.status_code == 202
  body = response.json()
  assert body["success"] is True
  assert body["caseId"] == sample_case.id
  assert body["status"] == "pending"

  job = app_overrides.jobs_repo.jobs[body["jobId"]]
  assert job.priority == MANUAL_PRIORITY
  assert job.data["trigger"] == "manual_reprocess"
  assert app_overrides.enqueuer.dispatched == [(body["jobId"], QUEUE)]
  assert app_overrides.cases_repo.cases[sample_case.id].processing_status == "pending"
  assert app_overrides.channel.statuses == ["pending"]


@pytest.mark.anyio
async def test_reprocess_while_processing_conflicts(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  app_overrides.cases_repo.add_case(CaseRecord(id="busy", user_id="user-1", processing_status="processing", last_ai_update=START))

  status_body = (await async_client.get("/v1/cases/busy/status")).json()
  assert status_body["canRetrigger"] is False

  response = await async_client.post("/v1/cases/busy/reprocess")
  assert response.status_code == 409
  assert response.json()["error"] == "invalid_status_transition"
  assert app_overrides.jobs_repo.jobs == {}
  assert app_overrides.enqueuer.dispatched == []


@pytest.mark.anyio
async def test_case_routes_require_a_bearer_token(async_client: AsyncClient, app_overrides: AppOverrides, sample_case: CaseRecord) -> None:
  del app.dependency_overrides[get_current_principal]

  response = await async_client.get(f"/v1/cases/{sample_case.id}/status")
  # HTTPBearer answers 403 on older FastAPI releases and 401 on newer ones.
  assert response.status_code in (401, 403)
