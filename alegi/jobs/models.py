"""Domain models for durable queue jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

JobStatus = Literal["pending", "processing", "completed", "failed"]
JOB_STATUSES: tuple[JobStatus, ...] = ("pending", "processing", "completed", "failed")


@dataclass
class JobRecord:
  """A unit of queued work with retry bookkeeping."""

  id: str
  queue_name: str
  data: dict[str, Any]
  status: JobStatus
  priority: int
  attempts: int
  max_attempts: int
  created_at: datetime
  scheduled_for: datetime
  started_at: datetime | None = None
  completed_at: datetime | None = None
  failed_at: datetime | None = None
  error: str | None = None
  result: dict[str, Any] | None = None

  @property
  def exhausted(self) -> bool:
    return self.attempts >= self.max_attempts


@dataclass(frozen=True)
class QueueStats:
  queue_name: str
  pending: int = 0
  processing: int = 0
  completed: int = 0
  failed: int = 0

  @property
  def total(self) -> int:
    return self.pending + self.processing + self.completed + self.failed

  def as_dict(self) -> dict[str, Any]:
    return {"queue": self.queue_name, "pending": self.pending, "processing": self.processing, "completed": self.completed, "failed": self.failed, "total": self.total}


@dataclass
class BatchResult:
  """Aggregate counts for one batch tick."""

  processed: int = 0
  succeeded: int = 0
  failed: int = 0
  job_ids: list[str] = field(default_factory=list)

  @property
  def success_rate(self) -> float:
    if self.processed == 0:
      return 0.0
    return round(self.succeeded / self.processed * 100, 2)

  def as_dict(self) -> dict[str, Any]:
    return {"processed": self.processed, "succeeded": self.succeeded, "failed": self.failed, "success_rate": self.success_rate, "job_ids": list(self.job_ids)}
