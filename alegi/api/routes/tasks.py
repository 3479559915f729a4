from __future__ import annotations

import logging
from datetime import timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from alegi.api.deps import get_case_event_service, get_handler_registry, get_job_queue
from alegi.api.models import CleanupRequest, ProcessBatchRequest, ProcessJobRequest, ProcessStuckCasesRequest, RecoverStaleRequest
from alegi.config import Settings, get_settings
from alegi.core.security import require_internal_service
from alegi.jobs.queue import JobQueue
from alegi.jobs.worker import JobHandlerRegistry, process_next_job
from alegi.services.case_events import CaseEventService

router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_internal_service)])
logger = logging.getLogger(__name__)


def _resolve_queue(registry: JobHandlerRegistry, queue_name: str) -> None:
  try:
    registry.resolve(queue_name)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/tasks/process-job", status_code=status.HTTP_200_OK)
async def process_job(
  payload: ProcessJobRequest,
  settings: Annotated[Settings, Depends(get_settings)],
  queue: Annotated[JobQueue, Depends(get_job_queue)],
  registry: Annotated[JobHandlerRegistry, Depends(get_handler_registry)],
) -> dict[str, Any]:
  """Run one job to completion inside this invocation; no_eligible_job when the queue is empty."""
  queue_name = payload.queue_name or settings.queue_name
  _resolve_queue(registry, queue_name)
  logger.info("Worker trigger for %s%s", queue_name, f" job {payload.job_id}" if payload.job_id else "")
  tick = await process_next_job(queue, registry, queue_name, job_id=payload.job_id)
  return tick.as_dict()


@router.post("/tasks/process-batch", status_code=status.HTTP_200_OK)
async def process_batch(
  payload: ProcessBatchRequest,
  settings: Annotated[Settings, Depends(get_settings)],
  queue: Annotated[JobQueue, Depends(get_job_queue)],
  registry: Annotated[JobHandlerRegistry, Depends(get_handler_registry)],
) -> dict[str, Any]:
  queue_name = payload.queue_name or settings.queue_name
  _resolve_queue(registry, queue_name)
  batch = await queue.claim_batch(queue_name, payload.batch_size or settings.worker_batch_size, registry.resolve(queue_name), on_exhausted=registry.exhaustion_hook(queue_name))
  return {"queue": queue_name, **batch.as_dict()}


@router.post("/tasks/process-stuck-cases", status_code=status.HTTP_200_OK)
async def process_stuck_cases(payload: ProcessStuckCasesRequest, service: Annotated[CaseEventService, Depends(get_case_event_service)]) -> dict[str, Any]:
  outcomes = await service.requeue_stuck_cases(older_than=timedelta(hours=payload.stuck_threshold_hours), limit=payload.max_cases, dry_run=payload.dry_run)
  enqueued = [outcome for outcome in outcomes if outcome.action == "enqueued"]
  return {"found": len(outcomes), "enqueued": len(enqueued), "dryRun": payload.dry_run, "cases": [outcome.as_dict() for outcome in outcomes]}


@router.get("/queues/{queue_name}/stats")
async def queue_stats(queue_name: str, queue: Annotated[JobQueue, Depends(get_job_queue)]) -> dict[str, Any]:
  stats = await queue.stats(queue_name)
  return stats.as_dict()


@router.post("/queues/{queue_name}/cleanup")
async def cleanup_queue(queue_name: str, payload: CleanupRequest, settings: Annotated[Settings, Depends(get_settings)], queue: Annotated[JobQueue, Depends(get_job_queue)]) -> dict[str, Any]:
  max_age_hours = settings.job_retention_hours if payload.max_age_hours is None else payload.max_age_hours
  removed = await queue.cleanup(queue_name, max_age_hours, include_completed=payload.include_completed)
  return {"queue": queue_name, "removed": removed}


@router.post("/queues/{queue_name}/recover-stale")
async def recover_stale_jobs(
  queue_name: str,
  payload: RecoverStaleRequest,
  settings: Annotated[Settings, Depends(get_settings)],
  queue: Annotated[JobQueue, Depends(get_job_queue)],
  registry: Annotated[JobHandlerRegistry, Depends(get_handler_registry)],
) -> dict[str, Any]:
  lease_timeout = timedelta(seconds=payload.lease_timeout_seconds or settings.job_lease_timeout_seconds)
  recovered = await queue.recover_stale(queue_name, lease_timeout, limit=payload.limit, on_exhausted=registry.exhaustion_hook(queue_name))
  return {"queue": queue_name, "recovered": recovered}
