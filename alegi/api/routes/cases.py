from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status

from alegi.api.deps import get_case_event_service, get_cases_repo, get_task_enqueuer
from alegi.api.models import CaseStatusResponse, ReprocessResponse
from alegi.api.routes.webhooks import dispatch_job
from alegi.cases.models import CaseRecord
from alegi.core.errors import CaseNotFoundError
from alegi.core.security import Principal, get_current_principal
from alegi.pipeline.orchestrator import summarize_outputs
from alegi.services.case_events import MANUAL_PRIORITY, CaseEventService
from alegi.services.tasks.interface import TaskEnqueuer
from alegi.storage.cases_repo import CasesRepository

router = APIRouter(prefix="/v1/cases", tags=["cases"])
logger = logging.getLogger(__name__)

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


async def _owned_case(case_id: str, principal: Principal, cases_repo: CasesRepository) -> CaseRecord:
  case = await cases_repo.get_case(case_id)
  # Other users' cases are reported as missing rather than forbidden.
  if case is None or case.user_id != principal.user_id:
    raise CaseNotFoundError(case_id)
  return case


@router.get("/{case_id}/status", response_model=CaseStatusResponse)
async def get_case_status(
  case_id: str, principal: Annotated[Principal, Depends(get_current_principal)], cases_repo: Annotated[CasesRepository, Depends(get_cases_repo)]
) -> CaseStatusResponse:
  """Polling fallback for clients without a live connection."""
  case = await _owned_case(case_id, principal, cases_repo)
  results = None
  if case.processing_status == "completed":
    stages = await cases_repo.list_stages(case.id)
    results = summarize_outputs({stage.stage_name: stage.output or {} for stage in stages if stage.status == "completed"})
  return CaseStatusResponse(
    status=case.processing_status,
    last_update=case.last_ai_update.strftime(_DATE_FORMAT) if case.last_ai_update else None,
    results=results,
    error=case.processing_error if case.processing_status == "failed" else None,
    can_retrigger=case.processing_status != "processing",
  )


@router.post("/{case_id}/reprocess", status_code=status.HTTP_202_ACCEPTED, response_model=ReprocessResponse)
async def reprocess_case(
  case_id: str,
  background_tasks: BackgroundTasks,
  principal: Annotated[Principal, Depends(get_current_principal)],
  cases_repo: Annotated[CasesRepository, Depends(get_cases_repo)],
  service: Annotated[CaseEventService, Depends(get_case_event_service)],
  enqueuer: Annotated[TaskEnqueuer, Depends(get_task_enqueuer)],
) -> ReprocessResponse:
  """Start a fresh run; InvalidStatusTransition (409) while one is in flight."""
  case = await _owned_case(case_id, principal, cases_repo)
  outcome = await service.enqueue_case(case, source="manual", trigger="manual_reprocess", priority=MANUAL_PRIORITY)
  logger.info("User %s requested reprocessing of case %s (job %s)", principal.user_id, case.id, outcome.job_id)
  background_tasks.add_task(dispatch_job, enqueuer, outcome.job_id, service.queue_name)
  return ReprocessResponse(case_id=case.id, job_id=outcome.job_id or "")
