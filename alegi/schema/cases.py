from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from alegi.core.database import Base


class Case(Base):
  """Only the columns the enrichment pipeline reads or writes."""

  __tablename__ = "cases"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  case_name: Mapped[str | None] = mapped_column(String, nullable=True)
  case_type: Mapped[str | None] = mapped_column(String, nullable=True)
  jurisdiction: Mapped[str | None] = mapped_column(String, nullable=True)
  case_narrative: Mapped[str | None] = mapped_column(Text, nullable=True)
  history_narrative: Mapped[str | None] = mapped_column(Text, nullable=True)
  case_stage: Mapped[str | None] = mapped_column(String, nullable=True)
  processing_status: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  ai_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  last_ai_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class CaseDocument(Base):
  __tablename__ = "case_documents"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  case_id: Mapped[str] = mapped_column(ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
  file_name: Mapped[str] = mapped_column(String, nullable=False)
  file_url: Mapped[str | None] = mapped_column(String, nullable=True)
  extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CaseProcessingStage(Base):
  __tablename__ = "case_processing_stages"
  __table_args__ = (UniqueConstraint("case_id", "stage_name", name="ux_case_processing_stages_case_stage"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  case_id: Mapped[str] = mapped_column(ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
  stage_name: Mapped[str] = mapped_column(String, nullable=False)
  position: Mapped[int] = mapped_column(Integer, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  output: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CaseAnalysis(Base):
  __tablename__ = "case_analyses"
  __table_args__ = (UniqueConstraint("case_id", "analysis_type", name="ux_case_analyses_case_type"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  case_id: Mapped[str] = mapped_column(ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
  analysis_type: Mapped[str] = mapped_column(String, nullable=False)
  data: Mapped[dict] = mapped_column(JSONB, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ProcessingError(Base):
  """Operator-only diagnostics; the case row keeps just the concise message."""

  __tablename__ = "processing_errors"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  case_id: Mapped[str] = mapped_column(ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
  stage_name: Mapped[str | None] = mapped_column(String, nullable=True)
  error_type: Mapped[str] = mapped_column(String, nullable=False)
  error_message: Mapped[str] = mapped_column(Text, nullable=False)
  error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)
  context: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
