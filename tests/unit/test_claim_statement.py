from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.dialects import postgresql

from alegi.storage.postgres_jobs_repo import build_claim_statement


def test_claim_statement_is_a_single_conditional_update() -> None:
  """The lease is taken with SKIP LOCKED inside one UPDATE ... RETURNING."""
  statement = build_claim_statement("case-processing", datetime(2026, 1, 1, tzinfo=UTC))
  sql = str(statement.compile(dialect=postgresql.dialect())).upper()
  assert sql.startswith("UPDATE QUEUE_JOBS")
  assert "FOR UPDATE SKIP LOCKED" in sql
  assert "RETURNING" in sql
  assert "ORDER BY QUEUE_JOBS.PRIORITY DESC, QUEUE_JOBS.CREATED_AT ASC" in sql
  assert "LIMIT" in sql
