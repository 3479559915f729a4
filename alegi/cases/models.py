"""Domain models for the case fields and stage records the pipeline owns."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

ProcessingStatus = Literal["pending", "processing", "completed", "failed"]
StageStatus = Literal["pending", "running", "completed", "failed"]


@dataclass
class CaseRecord:
  id: str
  user_id: str
  case_name: str | None = None
  case_type: str | None = None
  jurisdiction: str | None = None
  case_narrative: str | None = None
  history_narrative: str | None = None
  case_stage: str | None = None
  processing_status: ProcessingStatus | None = None
  processing_error: str | None = None
  ai_processed: bool = False
  last_ai_update: datetime | None = None

  @property
  def narrative_text(self) -> str:
    return "\n\n".join(part for part in (self.case_narrative, self.history_narrative) if part)


@dataclass
class CaseDocumentRecord:
  id: str
  case_id: str
  file_name: str
  file_url: str | None = None
  extracted_text: str | None = None


@dataclass
class StageRecord:
  case_id: str
  stage_name: str
  position: int
  status: StageStatus
  output: dict[str, Any] | None = None
  error: str | None = None
  started_at: datetime | None = None
  completed_at: datetime | None = None


@dataclass(frozen=True)
class ProcessingErrorRecord:
  case_id: str
  stage_name: str | None
  error_type: str
  error_message: str
  error_stack: str | None = None
  context: dict[str, Any] = field(default_factory=dict)
