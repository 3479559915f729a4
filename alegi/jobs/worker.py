"""Worker tick: claim one job, run its queue's handler, record the outcome."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from alegi.core.errors import CaseNotFoundError, InvalidStatusTransition, QueueEmpty
from alegi.jobs.models import JobRecord
from alegi.jobs.queue import ExhaustedHook, JobHandler, JobQueue
from alegi.notifications.service import CaseStatusNotifier
from alegi.pipeline.orchestrator import PipelineOrchestrator
from alegi.storage.cases_repo import CasesRepository

logger = logging.getLogger(__name__)

TickStatus = Literal["empty", "completed", "retrying", "failed"]


class CaseJobHandler:
  """Runs the enrichment pipeline for the case referenced by a job payload."""

  def __init__(self, *, cases_repo: CasesRepository, orchestrator: PipelineOrchestrator, notifier: CaseStatusNotifier) -> None:
    self._cases_repo = cases_repo
    self._orchestrator = orchestrator
    self._notifier = notifier

  async def __call__(self, job: JobRecord) -> dict[str, Any]:
    case_id = job.data.get("case_id")
    if not case_id:
      raise ValueError(f"Job {job.id} payload has no case_id")
    case = await self._cases_repo.get_case(str(case_id))
    if case is None:
      raise CaseNotFoundError(str(case_id))

    try:
      case = await self._notifier.transition(case, "processing")
    except InvalidStatusTransition as exc:
      # Leftover job for a case whose run already finished.
      logger.info("Skipping job %s: %s", job.id, exc)
      return {"case_id": case.id, "outcome": "skipped", "reason": str(exc)}
    outcome = await self._orchestrator.run(case)
    if outcome.succeeded:
      await self._notifier.transition(case, "completed", results=outcome.summary())
    else:
      await self._notifier.transition(case, "failed", error=outcome.error)
    # A pipeline failure is still a finished job; the case status carries the outcome.
    return outcome.as_job_result()

  async def on_exhausted(self, job: JobRecord) -> None:
    """Close out a case whose job ran out of attempts so it does not sit in processing."""
    case_id = job.data.get("case_id")
    case = await self._cases_repo.get_case(str(case_id)) if case_id else None
    if case is None or case.processing_status != "processing":
      return
    await self._notifier.transition(case, "failed", error=f"Processing stopped after {job.attempts} attempts: {job.error}")


class JobHandlerRegistry:
  """Registry mapping queue names to job handlers."""

  def __init__(self, handlers: dict[str, JobHandler]) -> None:
    self._handlers = dict(handlers)

  def resolve(self, queue_name: str) -> JobHandler:
    handler = self._handlers.get(queue_name)
    if handler is None:
      raise ValueError(f"Unsupported queue: {queue_name}")
    return handler

  def exhaustion_hook(self, queue_name: str) -> ExhaustedHook | None:
    """The handler's on_exhausted callback, when it has one."""
    return getattr(self._handlers.get(queue_name), "on_exhausted", None)

  def queue_names(self) -> list[str]:
    return sorted(self._handlers)


@dataclass(frozen=True)
class WorkerTickResult:
  status: TickStatus
  job_id: str | None = None
  attempts: int | None = None
  result: dict[str, Any] | None = None
  error: str | None = None

  def as_dict(self) -> dict[str, Any]:
    if self.status == "empty":
      return {"status": "no_eligible_job"}
    payload: dict[str, Any] = {"status": self.status, "job_id": self.job_id, "attempts": self.attempts}
    if self.result is not None:
      payload["result"] = self.result
    if self.error:
      payload["error"] = self.error
    return payload


async def process_next_job(queue: JobQueue, registry: JobHandlerRegistry, queue_name: str, *, job_id: str | None = None) -> WorkerTickResult:
  """Claim the named job, or the next eligible one, and run it to a recorded outcome."""
  handler = registry.resolve(queue_name)
  claimed = await (queue.claim(job_id) if job_id else queue.claim_next(queue_name))
  if isinstance(claimed, QueueEmpty):
    logger.info("No eligible job on %s%s", queue_name, f" for id {job_id}" if job_id else "")
    return WorkerTickResult(status="empty")
  if claimed.queue_name != queue_name:
    # Claimed by id under the wrong queue; hand it back through the normal retry path.
    message = f"Job belongs to queue {claimed.queue_name}, not {queue_name}"
    released = await queue.fail(claimed.id, message, on_exhausted=registry.exhaustion_hook(claimed.queue_name))
    return WorkerTickResult(status="retrying" if released.status == "pending" else "failed", job_id=claimed.id, attempts=released.attempts, error=message)

  await queue.run_job(claimed, handler, on_exhausted=registry.exhaustion_hook(queue_name))
  final = await queue.repo.get_job(claimed.id)
  if final is None:
    return WorkerTickResult(status="failed", job_id=claimed.id, error="Job disappeared after processing")
  if final.status == "completed":
    return WorkerTickResult(status="completed", job_id=final.id, attempts=final.attempts, result=final.result)
  status: TickStatus = "retrying" if final.status == "pending" else "failed"
  return WorkerTickResult(status=status, job_id=final.id, attempts=final.attempts, error=final.error)
