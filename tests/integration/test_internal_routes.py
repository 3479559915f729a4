from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient

from alegi.cases.models import CaseRecord
from alegi.config import get_settings
from alegi.jobs.models import JobRecord
from tests.conftest import QUEUE, AppOverrides
from tests.fakes import START


def _service_headers() -> dict[str, str]:
  settings = get_settings()
  return {"x-internal-service": settings.internal_service_name, "x-service-secret": settings.internal_service_secret}


@pytest.mark.anyio
async def test_internal_routes_require_service_credentials(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  assert (await async_client.post("/internal/tasks/process-job", json={})).status_code == 401
  wrong = {**_service_headers(), "x-service-secret": "guess"}
  assert (await async_client.post("/internal/tasks/process-job", json={}, headers=wrong)).status_code == 401
  assert (await async_client.get(f"/internal/queues/{QUEUE}/stats", headers=wrong)).status_code == 401


@pytest.mark.anyio
async def test_process_job_on_empty_queue(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  response = await async_client.post("/internal/tasks/process-job", json={}, headers=_service_headers())
  assert response.status_code == 200
  assert response.json() == {"status": "no_eligible_job"}


@pytest.mark.anyio
async def test_process_job_runs_the_pipeline(async_client: AsyncClient, app_overrides: AppOverrides, sample_case: CaseRecord) -> None:
  await async_client.post("/webhooks/external/case-events", json={"type": "INSERT", "table": "cases", "record": {"id": sample_case.id, "user_id": sample_case.user_id}})
  [job_id] = app_overrides.jobs_repo.jobs

  response = await async_client.post("/internal/tasks/process-job", json={"job_id": job_id}, headers=_service_headers())
  assert response.status_code == 200
  body = response.json()
  assert body["status"] == "completed"
  assert body["job_id"] == job_id
  assert body["result"]["outcome"] == "completed"
  assert app_overrides.cases_repo.cases[sample_case.id].processing_status == "completed"
  assert app_overrides.channel.statuses == ["pending", "processing", "completed"]


@pytest.mark.anyio
async def test_unknown_queue_and_extra_fields_are_rejected(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  response = await async_client.post("/internal/tasks/process-job", json={"queue_name": "emails"}, headers=_service_headers())
  assert response.status_code == 400
  assert "Unsupported queue" in response.json()["detail"]

  response = await async_client.post("/internal/tasks/process-job", json={"job": "x"}, headers=_service_headers())
  assert response.status_code == 422
  assert response.json()["error"] == "validation_error"


@pytest.mark.anyio
async def test_batch_and_stats(async_client: AsyncClient, app_overrides: AppOverrides, cases_repo, sample_case: CaseRecord) -> None:
  cases_repo.add_case(CaseRecord(id="case-2", user_id="user-1", case_narrative="Slip and fall at a grocery store."))
  for case_id in (sample_case.id, "case-2", "ghost"):
    await async_client.post("/webhooks/external/case-events", json={"type": "INSERT", "table": "cases", "record": {"id": case_id, "user_id": "user-1"}})
  # The unknown case is rejected at the boundary and never enqueued.
  assert len(app_overrides.jobs_repo.jobs) == 2

  response = await async_client.post("/internal/tasks/process-batch", json={"batch_size": 5}, headers=_service_headers())
  assert response.status_code == 200
  assert response.json()["processed"] == 2
  assert response.json()["succeeded"] == 2

  stats = await async_client.get(f"/internal/queues/{QUEUE}/stats", headers=_service_headers())
  assert stats.json() == {"queue": QUEUE, "pending": 0, "processing": 0, "completed": 2, "failed": 0, "total": 2}


@pytest.mark.anyio
async def test_cleanup_and_recover_stale(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  now = datetime.now(UTC)
  old = now - timedelta(days=3)
  jobs = app_overrides.jobs_repo.jobs
  jobs["dead"] = JobRecord(id="dead", queue_name=QUEUE, data={}, status="failed", priority=0, attempts=3, max_attempts=3, created_at=old, scheduled_for=old, failed_at=old)
  jobs["done"] = JobRecord(id="done", queue_name=QUEUE, data={}, status="completed", priority=0, attempts=0, max_attempts=3, created_at=old, scheduled_for=old, completed_at=old)
  jobs["stuck"] = JobRecord(id="stuck", queue_name=QUEUE, data={}, status="processing", priority=0, attempts=0, max_attempts=3, created_at=old, scheduled_for=old, started_at=old)

  response = await async_client.post(f"/internal/queues/{QUEUE}/recover-stale", json={}, headers=_service_headers())
  assert response.json() == {"queue": QUEUE, "recovered": ["stuck"]}
  assert jobs["stuck"].status == "pending"

  response = await async_client.post(f"/internal/queues/{QUEUE}/cleanup", json={}, headers=_service_headers())
  assert response.json() == {"queue": QUEUE, "removed": 1}
  response = await async_client.post(f"/internal/queues/{QUEUE}/cleanup", json={"max_age_hours": 1, "include_completed": True}, headers=_service_headers())
  assert response.json()["removed"] == 1
  assert set(jobs) == {"stuck"}


@pytest.mark.anyio
async def test_process_stuck_cases(async_client: AsyncClient, app_overrides: AppOverrides, cases_repo) -> None:
  cases_repo.add_case(CaseRecord(id="stale", user_id="user-1", processing_status="failed", last_ai_update=START))

  response = await async_client.post("/internal/tasks/process-stuck-cases", json={"stuck_threshold_hours": 24, "dry_run": True}, headers=_service_headers())
  assert response.json()["found"] == 1
  assert response.json()["enqueued"] == 0
  assert app_overrides.jobs_repo.jobs == {}

  response = await async_client.post("/internal/tasks/process-stuck-cases", json={"stuck_threshold_hours": 24}, headers=_service_headers())
  body = response.json()
  assert body["enqueued"] == 1
  assert body["dryRun"] is False
  assert body["cases"][0]["caseId"] == "stale"
  assert len(app_overrides.jobs_repo.jobs) == 1
