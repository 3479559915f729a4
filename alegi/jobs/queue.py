"""Durable job queue: enqueue, atomic claim, complete/fail bookkeeping and batch ticks."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from alegi.core.errors import QUEUE_EMPTY, QueueEmpty
from alegi.jobs.models import BatchResult, JobRecord, QueueStats
from alegi.storage.jobs_repo import JobsRepository
from alegi.utils.backoff import BackoffPolicy

logger = logging.getLogger(__name__)

JobHandler = Callable[[JobRecord], Awaitable[dict[str, Any] | None]]
# Called once a job is permanently failed, so the work it was driving can be closed out.
ExhaustedHook = Callable[[JobRecord], Awaitable[None]]
Clock = Callable[[], datetime]

_MAX_ERROR_CHARS = 2000


def utc_now() -> datetime:
  return datetime.now(UTC)


class JobStateError(RuntimeError):
  """A complete/fail call targeted a job that is not leased."""


class JobQueue:
  """Queue operations over a JobsRepository.

  The repository performs each transition as a conditional update, so two workers racing on the same
  job can never both observe success.
  """

  def __init__(self, repo: JobsRepository, *, backoff: BackoffPolicy, default_max_attempts: int = 3, clock: Clock = utc_now) -> None:
    self._repo = repo
    self._backoff = backoff
    self._default_max_attempts = default_max_attempts
    self._clock = clock

  @property
  def repo(self) -> JobsRepository:
    return self._repo

  async def enqueue(self, queue_name: str, payload: dict[str, Any], *, priority: int = 0, max_attempts: int | None = None, scheduled_for: datetime | None = None) -> str:
    """Create a pending job and return its id. Duplicate payloads are allowed."""
    attempts_cap = self._default_max_attempts if max_attempts is None else max_attempts
    if attempts_cap <= 0:
      raise ValueError("max_attempts must be a positive integer.")
    now = self._clock()
    record = JobRecord(
      id=str(uuid.uuid4()),
      queue_name=queue_name,
      data=dict(payload),
      status="pending",
      priority=priority,
      attempts=0,
      max_attempts=attempts_cap,
      created_at=now,
      scheduled_for=scheduled_for or now,
    )
    await self._repo.create_job(record)
    logger.info("Enqueued job %s on %s (priority=%s, max_attempts=%s)", record.id, queue_name, priority, attempts_cap)
    return record.id

  async def claim_next(self, queue_name: str) -> JobRecord | QueueEmpty:
    claimed = await self._repo.claim_next(queue_name, now=self._clock())
    if claimed is None:
      return QUEUE_EMPTY
    logger.info("Claimed job %s from %s (attempt %s/%s)", claimed.id, queue_name, claimed.attempts + 1, claimed.max_attempts)
    return claimed

  async def claim(self, job_id: str) -> JobRecord | QueueEmpty:
    """Lease a specific job; QueueEmpty when it is missing, leased, finished or not yet eligible."""
    claimed = await self._repo.claim_job(job_id, now=self._clock())
    if claimed is None:
      return QUEUE_EMPTY
    logger.info("Claimed job %s by id (attempt %s/%s)", job_id, claimed.attempts + 1, claimed.max_attempts)
    return claimed

  async def complete(self, job_id: str, result: dict[str, Any] | None = None) -> JobRecord:
    completed = await self._repo.complete_job(job_id, result=result, now=self._clock())
    if completed is None:
      raise JobStateError(f"Job {job_id} is not processing; cannot complete")
    logger.info("Completed job %s", job_id)
    return completed

  async def fail(self, job_id: str, error: str, *, on_exhausted: ExhaustedHook | None = None) -> JobRecord:
    """Consume an attempt; reschedule with backoff or fail permanently once attempts are exhausted."""
    job = await self._repo.get_job(job_id)
    if job is None or job.status != "processing":
      raise JobStateError(f"Job {job_id} is not processing; cannot fail")

    attempts = job.attempts + 1
    message = error[:_MAX_ERROR_CHARS]
    now = self._clock()
    if attempts < job.max_attempts:
      retry_at = self._backoff.next_eligible_time(now, attempts)
      updated = await self._repo.retry_job(job_id, attempts=attempts, scheduled_for=retry_at, error=message)
      if updated is None:
        raise JobStateError(f"Job {job_id} changed while recording a retry")
      logger.warning("Job %s failed attempt %s/%s; retrying at %s: %s", job_id, attempts, job.max_attempts, retry_at.isoformat(), message)
      return updated

    updated = await self._repo.fail_job(job_id, attempts=attempts, error=message, now=now)
    if updated is None:
      raise JobStateError(f"Job {job_id} changed while recording a failure")
    logger.error("Job %s permanently failed after %s attempts: %s", job_id, attempts, message)
    if on_exhausted is not None:
      try:
        await on_exhausted(updated)
      except Exception as exc:  # noqa: BLE001
        # The job outcome is already recorded; the stuck-case sweep picks up whatever the hook left behind.
        logger.error("Exhaustion hook failed for job %s: %s", job_id, exc, exc_info=True)
    return updated

  async def run_job(self, job: JobRecord, handler: JobHandler, *, on_exhausted: ExhaustedHook | None = None) -> bool:
    """Run a leased job and record the outcome; handler errors never escape."""
    try:
      result = await handler(job)
    except Exception as exc:  # noqa: BLE001
      logger.error("Handler failed for job %s: %s", job.id, exc, exc_info=True)
      try:
        await self.fail(job.id, str(exc) or type(exc).__name__, on_exhausted=on_exhausted)
      except JobStateError:
        logger.warning("Job %s lease was lost before its failure could be recorded", job.id)
      return False
    try:
      await self.complete(job.id, result)
    except JobStateError:
      # A stale-lease sweep reclaimed the job while the handler ran.
      logger.warning("Job %s lease was lost before completion could be recorded", job.id)
      return False
    return True

  async def claim_batch(self, queue_name: str, batch_size: int, handler: JobHandler, *, on_exhausted: ExhaustedHook | None = None) -> BatchResult:
    """Claim and run up to batch_size jobs sequentially; one failure does not stop the rest."""
    if batch_size <= 0:
      raise ValueError("batch_size must be a positive integer.")
    outcome = BatchResult()
    for _ in range(batch_size):
      claimed = await self.claim_next(queue_name)
      if isinstance(claimed, QueueEmpty):
        break
      outcome.processed += 1
      outcome.job_ids.append(claimed.id)
      if await self.run_job(claimed, handler, on_exhausted=on_exhausted):
        outcome.succeeded += 1
      else:
        outcome.failed += 1
    logger.info("Batch on %s processed=%s succeeded=%s failed=%s", queue_name, outcome.processed, outcome.succeeded, outcome.failed)
    return outcome

  async def stats(self, queue_name: str) -> QueueStats:
    counts = await self._repo.count_by_status(queue_name)
    return QueueStats(queue_name=queue_name, **counts)

  async def cleanup(self, queue_name: str, max_age_hours: float, *, include_completed: bool = False) -> int:
    """Delete failed jobs older than max_age_hours (optionally completed ones too); return the count removed."""
    if max_age_hours < 0:
      raise ValueError("max_age_hours must not be negative.")
    cutoff = self._clock() - timedelta(hours=max_age_hours)
    removed = await self._repo.delete_finished_before(queue_name, status="failed", cutoff=cutoff)
    if include_completed:
      removed += await self._repo.delete_finished_before(queue_name, status="completed", cutoff=cutoff)
    logger.info("Cleanup on %s removed %s jobs older than %s", queue_name, removed, cutoff.isoformat())
    return removed

  async def recover_stale(self, queue_name: str, lease_timeout: timedelta, *, limit: int = 50, on_exhausted: ExhaustedHook | None = None) -> list[str]:
    """Treat jobs leased longer than lease_timeout as failed runs, e.g. after a host timeout killed the worker."""
    started_before = self._clock() - lease_timeout
    stale = await self._repo.list_stale_processing(queue_name, started_before=started_before, limit=limit)
    recovered: list[str] = []
    for job in stale:
      try:
        await self.fail(job.id, f"Lease expired after {int(lease_timeout.total_seconds())}s without completion", on_exhausted=on_exhausted)
      except JobStateError:
        # Finished between the scan and the update.
        continue
      recovered.append(job.id)
    if recovered:
      logger.warning("Recovered %s stale jobs on %s", len(recovered), queue_name)
    return recovered
