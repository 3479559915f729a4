from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from alegi.core.database import Base


class QueueJob(Base):
  __tablename__ = "queue_jobs"
  __table_args__ = (
    # Serves the claim query: eligible pending jobs by priority then age.
    Index("ix_queue_jobs_claimable", "queue_name", "priority", "created_at", postgresql_where=text("status = 'pending'")),
    Index("ix_queue_jobs_queue_status", "queue_name", "status"),
  )

  id: Mapped[str] = mapped_column(String, primary_key=True)
  queue_name: Mapped[str] = mapped_column(String, nullable=False)
  data: Mapped[dict] = mapped_column(JSONB, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
  priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("3"))
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
