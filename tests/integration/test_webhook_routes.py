from __future__ import annotations

import json
from dataclasses import replace

import pytest
from httpx import AsyncClient

from alegi.cases.models import CaseRecord
from alegi.config import get_settings
from alegi.core.security import compute_signature
from alegi.main import app
from tests.conftest import QUEUE, AppOverrides


def _signed(payload: dict | bytes, secret: str | None = None) -> tuple[bytes, dict[str, str]]:
  body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
  signature = compute_signature(body, secret or get_settings().webhook_secret)
  return body, {"content-type": "application/json", "x-alegi-signature": f"sha256={signature}"}


INSERT = {"type": "INSERT", "table": "cases", "schema": "public", "record": {"id": "case-1", "user_id": "user-1"}, "old_record": None}


@pytest.mark.anyio
async def test_signed_insert_enqueues_and_dispatches(async_client: AsyncClient, app_overrides: AppOverrides, sample_case: CaseRecord) -> None:
  body, headers = _signed(INSERT)
  response = await async_client.post("/webhooks/case-events", content=body, headers=headers)

  assert response.status_code == 200
  payload = response.json()
  assert payload["success"] is True
  assert payload["data"]["action"] == "enqueued"
  job_id = payload["data"]["jobId"]
  assert app_overrides.jobs_repo.jobs[job_id].data["source"] == "first_party"
  assert app_overrides.enqueuer.dispatched == [(job_id, QUEUE)]
  assert app_overrides.cases_repo.cases["case-1"].processing_status == "pending"


@pytest.mark.anyio
async def test_bad_or_missing_signatures_are_rejected(async_client: AsyncClient, app_overrides: AppOverrides, sample_case: CaseRecord) -> None:
  body, headers = _signed(INSERT, secret="not-the-secret")
  assert (await async_client.post("/webhooks/case-events", content=body, headers=headers)).status_code == 401

  tampered = body.replace(b"case-1", b"case-2")
  _, good_headers = _signed(INSERT)
  assert (await async_client.post("/webhooks/case-events", content=tampered, headers=good_headers)).status_code == 401

  assert (await async_client.post("/webhooks/case-events", content=body, headers={"content-type": "application/json"})).status_code == 401
  assert app_overrides.jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_unconfigured_secret_refuses_everything(async_client: AsyncClient, app_overrides: AppOverrides, sample_case: CaseRecord) -> None:
  app.dependency_overrides[get_settings] = lambda: replace(get_settings(), webhook_secret=None)
  body, headers = _signed(INSERT)
  response = await async_client.post("/webhooks/case-events", content=body, headers=headers)
  assert response.status_code == 403
  assert app_overrides.jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_malformed_events_are_rejected_before_enqueue(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  body, headers = _signed(b"{not json")
  response = await async_client.post("/webhooks/case-events", content=body, headers=headers)
  assert response.status_code == 400
  assert response.json()["error"] == "invalid_payload"

  body, headers = _signed({"type": "INSERT", "table": "cases"})
  response = await async_client.post("/webhooks/case-events", content=body, headers=headers)
  assert response.status_code == 400
  assert "missing record" in response.json()["detail"]
  assert app_overrides.jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_echo_updates_are_acknowledged_without_dispatch(async_client: AsyncClient, app_overrides: AppOverrides, sample_case: CaseRecord) -> None:
  old = {"id": "case-1", "user_id": "user-1", "processing_status": "pending"}
  body, headers = _signed({"type": "UPDATE", "table": "cases", "record": {**old, "processing_status": "processing"}, "old_record": old})
  response = await async_client.post("/webhooks/case-events", content=body, headers=headers)
  assert response.status_code == 200
  assert response.json()["data"]["action"] == "ignored"
  assert app_overrides.enqueuer.dispatched == []


@pytest.mark.anyio
async def test_unknown_case_returns_not_found(async_client: AsyncClient, app_overrides: AppOverrides) -> None:
  body, headers = _signed(INSERT)
  response = await async_client.post("/webhooks/case-events", content=body, headers=headers)
  assert response.status_code == 404
  assert response.json()["error"] == "case_not_found"


@pytest.mark.anyio
async def test_external_events_need_only_a_valid_structure(async_client: AsyncClient, app_overrides: AppOverrides, sample_case: CaseRecord) -> None:
  response = await async_client.post("/webhooks/external/case-events", json=INSERT)
  assert response.status_code == 200
  job_id = response.json()["data"]["jobId"]
  assert app_overrides.jobs_repo.jobs[job_id].data["source"] == "external"

  response = await async_client.post("/webhooks/external/case-events", json={"type": "INSERT", "table": "invoices", "record": {"id": "x", "user_id": "u"}})
  assert response.status_code == 400
