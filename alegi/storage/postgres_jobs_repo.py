"""Postgres-backed repository for queue jobs using SQLAlchemy."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Update, delete, func, select, update

from alegi.core.database import require_session_factory
from alegi.jobs.models import JOB_STATUSES, JobRecord, JobStatus
from alegi.schema.jobs import QueueJob
from alegi.storage.jobs_repo import JobsRepository


def build_claim_statement(queue_name: str, now: datetime) -> Update:
  """UPDATE ... WHERE id = (SELECT ... FOR UPDATE SKIP LOCKED) AND status = 'pending' RETURNING *."""
  candidate = (
    select(QueueJob.id)
    .where(QueueJob.queue_name == queue_name, QueueJob.status == "pending", QueueJob.scheduled_for <= now)
    .order_by(QueueJob.priority.desc(), QueueJob.created_at.asc())
    .limit(1)
    .with_for_update(skip_locked=True)
    .scalar_subquery()
  )
  return (
    update(QueueJob)
    .where(QueueJob.id == candidate, QueueJob.status == "pending")
    .values(status="processing", started_at=now)
    .returning(QueueJob)
    .execution_options(synchronize_session=False)
  )


class PostgresJobsRepository(JobsRepository):
  """Persist queue jobs to Postgres; every transition is a single conditional UPDATE."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def create_job(self, record: JobRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        QueueJob(
          id=record.id,
          queue_name=record.queue_name,
          data=record.data,
          status=record.status,
          priority=record.priority,
          attempts=record.attempts,
          max_attempts=record.max_attempts,
          created_at=record.created_at,
          scheduled_for=record.scheduled_for,
        )
      )
      await session.commit()

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(QueueJob, job_id)
      return None if row is None else self._model_to_record(row)

  async def claim_next(self, queue_name: str, *, now: datetime) -> JobRecord | None:
    return await self._execute_transition(build_claim_statement(queue_name, now))

  async def claim_job(self, job_id: str, *, now: datetime) -> JobRecord | None:
    stmt = update(QueueJob).where(QueueJob.id == job_id, QueueJob.status == "pending", QueueJob.scheduled_for <= now).values(status="processing", started_at=now)
    return await self._execute_transition(stmt.returning(QueueJob))

  async def complete_job(self, job_id: str, *, result: dict[str, Any] | None, now: datetime) -> JobRecord | None:
    stmt = update(QueueJob).where(QueueJob.id == job_id, QueueJob.status == "processing").values(status="completed", result=result, completed_at=now, error=None)
    return await self._execute_transition(stmt.returning(QueueJob))

  async def retry_job(self, job_id: str, *, attempts: int, scheduled_for: datetime, error: str) -> JobRecord | None:
    stmt = (
      update(QueueJob)
      .where(QueueJob.id == job_id, QueueJob.status == "processing", QueueJob.attempts == attempts - 1, QueueJob.max_attempts > attempts)
      .values(status="pending", attempts=attempts, scheduled_for=scheduled_for, error=error, started_at=None)
    )
    return await self._execute_transition(stmt.returning(QueueJob))

  async def fail_job(self, job_id: str, *, attempts: int, error: str, now: datetime) -> JobRecord | None:
    stmt = update(QueueJob).where(QueueJob.id == job_id, QueueJob.status == "processing", QueueJob.attempts == attempts - 1).values(status="failed", attempts=attempts, error=error, failed_at=now)
    return await self._execute_transition(stmt.returning(QueueJob))

  async def count_by_status(self, queue_name: str) -> dict[JobStatus, int]:
    async with self._session_factory() as session:
      stmt = select(QueueJob.status, func.count()).where(QueueJob.queue_name == queue_name).group_by(QueueJob.status)
      rows = (await session.execute(stmt)).all()
    counts: dict[JobStatus, int] = dict.fromkeys(JOB_STATUSES, 0)
    for status_value, count in rows:
      if status_value in counts:
        counts[status_value] = int(count)
    return counts

  async def delete_finished_before(self, queue_name: str, *, status: JobStatus, cutoff: datetime) -> int:
    if status not in ("completed", "failed"):
      raise ValueError(f"Only terminal jobs can be swept, got {status}")
    timestamp = QueueJob.failed_at if status == "failed" else QueueJob.completed_at
    async with self._session_factory() as session:
      stmt = delete(QueueJob).where(QueueJob.queue_name == queue_name, QueueJob.status == status, timestamp < cutoff).returning(QueueJob.id)
      removed = (await session.execute(stmt)).scalars().all()
      await session.commit()
    return len(removed)

  async def list_stale_processing(self, queue_name: str, *, started_before: datetime, limit: int) -> list[JobRecord]:
    async with self._session_factory() as session:
      stmt = select(QueueJob).where(QueueJob.queue_name == queue_name, QueueJob.status == "processing", QueueJob.started_at < started_before).order_by(QueueJob.started_at.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
    return [self._model_to_record(row) for row in rows]

  async def find_latest_for_case(self, queue_name: str, case_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = select(QueueJob).where(QueueJob.queue_name == queue_name, QueueJob.data["case_id"].astext == case_id).order_by(QueueJob.created_at.desc()).limit(1)
      row = (await session.execute(stmt)).scalars().first()
    return None if row is None else self._model_to_record(row)

  async def _execute_transition(self, stmt: Update) -> JobRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(stmt.execution_options(synchronize_session=False))).scalars().first()
      await session.commit()
    return None if row is None else self._model_to_record(row)

  @staticmethod
  def _model_to_record(row: QueueJob) -> JobRecord:
    return JobRecord(
      id=row.id,
      queue_name=row.queue_name,
      data=dict(row.data or {}),
      status=row.status,  # type: ignore[arg-type]
      priority=row.priority,
      attempts=row.attempts,
      max_attempts=row.max_attempts,
      created_at=row.created_at,
      scheduled_for=row.scheduled_for,
      started_at=row.started_at,
      completed_at=row.completed_at,
      failed_at=row.failed_at,
      error=row.error,
      result=row.result,
    )
