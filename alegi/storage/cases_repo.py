"""Storage interface for case records, stage checkpoints and diagnostics."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from alegi.cases.models import CaseDocumentRecord, CaseRecord, ProcessingErrorRecord, ProcessingStatus, StageRecord

# Columns the enrichment stages may write back onto the case row.
ENRICHABLE_FIELDS = frozenset({"case_type", "jurisdiction", "case_stage"})


class CasesRepository(Protocol):
  async def get_case(self, case_id: str) -> CaseRecord | None:
    """Fetch a case by identifier."""

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
    """Write processing_status only when the current value is in allowed_from; None means the guard failed."""

  async def list_documents(self, case_id: str) -> list[CaseDocumentRecord]:
    """Return the case's uploaded documents."""

  async def save_document_text(self, document_id: str, text: str) -> None:
    """Store extracted text for a document."""

  async def save_stage(self, record: StageRecord) -> None:
    """Upsert the stage record keyed by (case_id, stage_name)."""

  async def list_stages(self, case_id: str) -> list[StageRecord]:
    """Return stage records ordered by pipeline position."""

  async def save_analysis(self, case_id: str, analysis_type: str, data: dict[str, Any]) -> None:
    """Upsert a business-facing analysis row."""

  async def update_case_fields(self, case_id: str, **fields: Any) -> None:
    """Write enrichment columns such as case_type or jurisdiction."""

  async def record_processing_error(self, record: ProcessingErrorRecord) -> None:
    """Persist operator diagnostics."""

  async def find_stuck_cases(self, *, updated_before: datetime, limit: int) -> list[CaseRecord]:
    """Cases left pending, failed or unset whose last pipeline update is older than the cutoff."""
