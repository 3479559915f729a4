"""Postgres-backed repository for case pipeline state using SQLAlchemy."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert

from alegi.cases.models import CaseDocumentRecord, CaseRecord, ProcessingErrorRecord, ProcessingStatus, StageRecord
from alegi.core.database import require_session_factory
from alegi.schema.cases import Case, CaseAnalysis, CaseDocument, CaseProcessingStage, ProcessingError
from alegi.storage.cases_repo import ENRICHABLE_FIELDS, CasesRepository


def _case_to_record(row: Case) -> CaseRecord:
  return CaseRecord(
    id=row.id,
    user_id=row.user_id,
    case_name=row.case_name,
    case_type=row.case_type,
    jurisdiction=row.jurisdiction,
    case_narrative=row.case_narrative,
    history_narrative=row.history_narrative,
    case_stage=row.case_stage,
    processing_status=row.processing_status,  # type: ignore[arg-type]
    processing_error=row.processing_error,
    ai_processed=row.ai_processed,
    last_ai_update=row.last_ai_update,
  )


def _stage_to_record(row: CaseProcessingStage) -> StageRecord:
  return StageRecord(
    case_id=row.case_id,
    stage_name=row.stage_name,
    position=row.position,
    status=row.status,  # type: ignore[arg-type]
    output=row.output,
    error=row.error,
    started_at=row.started_at,
    completed_at=row.completed_at,
  )


class PostgresCasesRepository(CasesRepository):
  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def get_case(self, case_id: str) -> CaseRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Case, case_id)
    return None if row is None else _case_to_record(row)

  async def transition_status(
    self,
    case_id: str,
    *,
    status: ProcessingStatus,
    allowed_from: Iterable[ProcessingStatus | None],
    at: datetime,
    error: str | None = None,
    ai_processed: bool | None = None,
  ) -> CaseRecord | None:
    allowed = set(allowed_from)
    guards = []
    named = sorted(value for value in allowed if value is not None)
    if named:
      guards.append(Case.processing_status.in_(named))
    if None in allowed:
      guards.append(Case.processing_status.is_(None))
    if not guards:
      return None

    values: dict[str, Any] = {"processing_status": status, "processing_error": error, "last_ai_update": at}
    if ai_processed is not None:
      values["ai_processed"] = ai_processed
    stmt = update(Case).where(Case.id == case_id, or_(*guards)).values(**values).returning(Case).execution_options(synchronize_session=False)
    async with self._session_factory() as session:
      row = (await session.execute(stmt)).scalars().first()
      await session.commit()
    return None if row is None else _case_to_record(row)

  async def list_documents(self, case_id: str) -> list[CaseDocumentRecord]:
    async with self._session_factory() as session:
      rows = (await session.execute(select(CaseDocument).where(CaseDocument.case_id == case_id).order_by(CaseDocument.created_at.asc()))).scalars().all()
    return [CaseDocumentRecord(id=row.id, case_id=row.case_id, file_name=row.file_name, file_url=row.file_url, extracted_text=row.extracted_text) for row in rows]

  async def save_document_text(self, document_id: str, text: str) -> None:
    async with self._session_factory() as session:
      await session.execute(update(CaseDocument).where(CaseDocument.id == document_id).values(extracted_text=text))
      await session.commit()

  async def save_stage(self, record: StageRecord) -> None:
    values = {
      "case_id": record.case_id,
      "stage_name": record.stage_name,
      "position": record.position,
      "status": record.status,
      "output": record.output,
      "error": record.error,
      "started_at": record.started_at,
      "completed_at": record.completed_at,
    }
    stmt = insert(CaseProcessingStage).values(**values)
    stmt = stmt.on_conflict_do_update(constraint="ux_case_processing_stages_case_stage", set_={key: stmt.excluded[key] for key in values if key not in {"case_id", "stage_name"}})
    async with self._session_factory() as session:
      await session.execute(stmt)
      await session.commit()

  async def list_stages(self, case_id: str) -> list[StageRecord]:
    async with self._session_factory() as session:
      rows = (await session.execute(select(CaseProcessingStage).where(CaseProcessingStage.case_id == case_id).order_by(CaseProcessingStage.position.asc()))).scalars().all()
    return [_stage_to_record(row) for row in rows]

  async def save_analysis(self, case_id: str, analysis_type: str, data: dict[str, Any]) -> None:
    stmt = insert(CaseAnalysis).values(case_id=case_id, analysis_type=analysis_type, data=data)
    stmt = stmt.on_conflict_do_update(constraint="ux_case_analyses_case_type", set_={"data": stmt.excluded.data})
    async with self._session_factory() as session:
      await session.execute(stmt)
      await session.commit()

  async def update_case_fields(self, case_id: str, **fields: Any) -> None:
    unknown = set(fields) - ENRICHABLE_FIELDS
    if unknown:
      raise ValueError(f"Unsupported case fields: {sorted(unknown)}")
    values = {key: value for key, value in fields.items() if value is not None}
    if not values:
      return
    async with self._session_factory() as session:
      await session.execute(update(Case).where(Case.id == case_id).values(**values))
      await session.commit()

  async def record_processing_error(self, record: ProcessingErrorRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        ProcessingError(
          case_id=record.case_id,
          stage_name=record.stage_name,
          error_type=record.error_type,
          error_message=record.error_message,
          error_stack=record.error_stack,
          context=record.context or None,
        )
      )
      await session.commit()

  async def find_stuck_cases(self, *, updated_before: datetime, limit: int) -> list[CaseRecord]:
    # Processing rows are included; the sweep only resets those that have no live job left.
    stale_status = or_(Case.processing_status.in_(["pending", "processing", "failed"]), Case.processing_status.is_(None))
    stale_update = or_(Case.last_ai_update.is_(None), Case.last_ai_update < updated_before)
    stmt = select(Case).where(and_(stale_status, stale_update, Case.created_at < updated_before)).order_by(Case.created_at.asc()).limit(limit)
    async with self._session_factory() as session:
      rows = (await session.execute(stmt)).scalars().all()
    return [_case_to_record(row) for row in rows]
