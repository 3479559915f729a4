"""Storage interface for durable queue jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from alegi.jobs.models import JobRecord, JobStatus


class JobsRepository(Protocol):
  """Repository contract for queue jobs.

  Every state change is a conditional update keyed on the prior status (and attempt count where relevant);
  a method returns None when the precondition did not hold, which callers treat as a lost race.
  """

  async def create_job(self, record: JobRecord) -> None:
    """Persist a new pending job."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def claim_next(self, queue_name: str, *, now: datetime) -> JobRecord | None:
    """Atomically lease the highest-priority, oldest eligible pending job."""

  async def claim_job(self, job_id: str, *, now: datetime) -> JobRecord | None:
    """Atomically lease one specific job if it is pending and eligible."""

  async def complete_job(self, job_id: str, *, result: dict[str, Any] | None, now: datetime) -> JobRecord | None:
    """processing -> completed."""

  async def retry_job(self, job_id: str, *, attempts: int, scheduled_for: datetime, error: str) -> JobRecord | None:
    """processing -> pending with the new attempt count and schedule."""

  async def fail_job(self, job_id: str, *, attempts: int, error: str, now: datetime) -> JobRecord | None:
    """processing -> failed with the final attempt count."""

  async def count_by_status(self, queue_name: str) -> dict[JobStatus, int]:
    """Return job counts keyed by status."""

  async def delete_finished_before(self, queue_name: str, *, status: JobStatus, cutoff: datetime) -> int:
    """Delete completed or failed jobs whose terminal timestamp is older than cutoff."""

  async def list_stale_processing(self, queue_name: str, *, started_before: datetime, limit: int) -> list[JobRecord]:
    """Return processing jobs leased before the given time."""

  async def find_latest_for_case(self, queue_name: str, case_id: str) -> JobRecord | None:
    """Return the newest job whose payload references the case."""
