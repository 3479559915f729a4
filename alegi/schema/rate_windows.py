from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from alegi.core.database import Base


class RateWindow(Base):
  __tablename__ = "rate_windows"

  resource_key: Mapped[str] = mapped_column(String, primary_key=True)
  # [{"at": iso timestamp, "tokens": n}] for the admissions of the last minute, oldest first.
  admissions: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
  last_admitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
