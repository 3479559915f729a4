"""Create queue, rate window and case pipeline tables.

Revision ID: 5a7c1e9d3b20
Revises:
Create Date: 2026-10-16
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "5a7c1e9d3b20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "queue_jobs",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("queue_name", sa.String(), nullable=False),
    sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("status", sa.String(), server_default=sa.text("'pending'"), nullable=False),
    sa.Column("priority", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("max_attempts", sa.Integer(), server_default=sa.text("3"), nullable=False),
    sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("scheduled_for", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index("ix_queue_jobs_claimable", "queue_jobs", ["queue_name", "priority", "created_at"], unique=False, postgresql_where=sa.text("status = 'pending'"))
  op.create_index("ix_queue_jobs_queue_status", "queue_jobs", ["queue_name", "status"], unique=False)

  op.create_table(
    "rate_windows",
    sa.Column("resource_key", sa.String(), nullable=False),
    sa.Column("admissions", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
    sa.Column("last_admitted_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("version", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("resource_key"),
  )

  op.create_table(
    "cases",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("case_name", sa.String(), nullable=True),
    sa.Column("case_type", sa.String(), nullable=True),
    sa.Column("jurisdiction", sa.String(), nullable=True),
    sa.Column("case_narrative", sa.Text(), nullable=True),
    sa.Column("history_narrative", sa.Text(), nullable=True),
    sa.Column("case_stage", sa.String(), nullable=True),
    sa.Column("processing_status", sa.String(), nullable=True),
    sa.Column("processing_error", sa.Text(), nullable=True),
    sa.Column("ai_processed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("last_ai_update", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_cases_user_id"), "cases", ["user_id"], unique=False)
  op.create_index(op.f("ix_cases_processing_status"), "cases", ["processing_status"], unique=False)

  op.create_table(
    "case_documents",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("case_id", sa.String(), nullable=False),
    sa.Column("file_name", sa.String(), nullable=False),
    sa.Column("file_url", sa.String(), nullable=True),
    sa.Column("extracted_text", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_case_documents_case_id"), "case_documents", ["case_id"], unique=False)

  op.create_table(
    "case_processing_stages",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("case_id", sa.String(), nullable=False),
    sa.Column("stage_name", sa.String(), nullable=False),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("output", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("case_id", "stage_name", name="ux_case_processing_stages_case_stage"),
  )
  op.create_index(op.f("ix_case_processing_stages_case_id"), "case_processing_stages", ["case_id"], unique=False)

  op.create_table(
    "case_analyses",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("case_id", sa.String(), nullable=False),
    sa.Column("analysis_type", sa.String(), nullable=False),
    sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("case_id", "analysis_type", name="ux_case_analyses_case_type"),
  )
  op.create_index(op.f("ix_case_analyses_case_id"), "case_analyses", ["case_id"], unique=False)

  op.create_table(
    "processing_errors",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("case_id", sa.String(), nullable=False),
    sa.Column("stage_name", sa.String(), nullable=True),
    sa.Column("error_type", sa.String(), nullable=False),
    sa.Column("error_message", sa.Text(), nullable=False),
    sa.Column("error_stack", sa.Text(), nullable=True),
    sa.Column("context", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_processing_errors_case_id"), "processing_errors", ["case_id"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_processing_errors_case_id"), table_name="processing_errors")
  op.drop_table("processing_errors")
  op.drop_index(op.f("ix_case_analyses_case_id"), table_name="case_analyses")
  op.drop_table("case_analyses")
  op.drop_index(op.f("ix_case_processing_stages_case_id"), table_name="case_processing_stages")
  op.drop_table("case_processing_stages")
  op.drop_index(op.f("ix_case_documents_case_id"), table_name="case_documents")
  op.drop_table("case_documents")
  op.drop_index(op.f("ix_cases_processing_status"), table_name="cases")
  op.drop_index(op.f("ix_cases_user_id"), table_name="cases")
  op.drop_table("cases")
  op.drop_table("rate_windows")
  op.drop_index("ix_queue_jobs_queue_status", table_name="queue_jobs")
  op.drop_index("ix_queue_jobs_claimable", table_name="queue_jobs")
  op.drop_table("queue_jobs")
