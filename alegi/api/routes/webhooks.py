from __future__ import annotations

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status

from alegi.api.deps import get_case_event_service, get_task_enqueuer
from alegi.api.models import WebhookResponse
from alegi.config import Settings, get_settings
from alegi.core.errors import PermanentValidationError
from alegi.core.security import verify_signature
from alegi.services.case_events import CaseEventService, EnqueueOutcome, parse_change_event
from alegi.services.tasks.interface import TaskEnqueuer

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def _decode_body(body: bytes) -> Any:
  try:
    return json.loads(body)
  except (UnicodeDecodeError, json.JSONDecodeError) as exc:
    raise PermanentValidationError("Webhook body must be valid JSON") from exc


async def dispatch_job(enqueuer: TaskEnqueuer, job_id: str, queue_name: str) -> None:
  """Wake a worker for the job; the job stays queued for the next tick if this fails."""
  try:
    await enqueuer.enqueue(job_id, queue_name)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Worker dispatch failed for job %s; it will be picked up by the next tick: %s", job_id, exc)


def _respond(outcome: EnqueueOutcome, service: CaseEventService, enqueuer: TaskEnqueuer, background_tasks: BackgroundTasks) -> WebhookResponse:
  if outcome.job_id and outcome.action == "enqueued":
    background_tasks.add_task(dispatch_job, enqueuer, outcome.job_id, service.queue_name)
    return WebhookResponse(message="Case processing initiated", data=outcome.as_dict())
  return WebhookResponse(message="Event accepted; no processing required", data=outcome.as_dict())


@router.post("/case-events", status_code=status.HTTP_200_OK, response_model=WebhookResponse)
async def receive_case_event(
  request: Request,
  background_tasks: BackgroundTasks,
  settings: Annotated[Settings, Depends(get_settings)],
  service: Annotated[CaseEventService, Depends(get_case_event_service)],
  enqueuer: Annotated[TaskEnqueuer, Depends(get_task_enqueuer)],
  x_alegi_signature: str | None = Header(default=None),
) -> WebhookResponse:
  """First-party change events, authenticated by an HMAC of the raw body."""
  # Secure-by-default: an unsigned deployment must not accept events.
  if not settings.webhook_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Webhook authentication is not configured.")
  body = await request.body()
  if not x_alegi_signature:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing webhook signature")
  if not verify_signature(body, x_alegi_signature, settings.webhook_secret):
    logger.warning("Rejected case event with an invalid signature")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

  event = parse_change_event(_decode_body(body))
  outcome = await service.handle(event, source="first_party")
  return _respond(outcome, service, enqueuer, background_tasks)


@router.post("/external/case-events", status_code=status.HTTP_200_OK, response_model=WebhookResponse)
async def receive_external_case_event(
  request: Request,
  background_tasks: BackgroundTasks,
  service: Annotated[CaseEventService, Depends(get_case_event_service)],
  enqueuer: Annotated[TaskEnqueuer, Depends(get_task_enqueuer)],
) -> WebhookResponse:
  """Third-party change events; accepted on structural validation alone."""
  event = parse_change_event(_decode_body(await request.body()))
  outcome = await service.handle(event, source="external")
  return _respond(outcome, service, enqueuer, background_tasks)
