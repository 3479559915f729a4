from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class ProcessJobRequest(BaseModel):
  """Worker trigger payload: a specific job id, or just the queue to drain one job from."""

  job_id: StrictStr | None = Field(default=None, min_length=1, description="Job to process; omit to claim the next eligible job.")
  queue_name: StrictStr | None = Field(default=None, min_length=1, description="Queue to claim from; defaults to the configured case queue.")
  model_config = ConfigDict(extra="forbid")


class ProcessBatchRequest(BaseModel):
  queue_name: StrictStr | None = Field(default=None, min_length=1)
  batch_size: int | None = Field(default=None, ge=1, le=50, description="Defaults to the configured worker batch size.")
  model_config = ConfigDict(extra="forbid")


class CleanupRequest(BaseModel):
  max_age_hours: float | None = Field(default=None, ge=0, description="Defaults to the configured job retention.")
  include_completed: bool = Field(default=False, description="Also delete completed jobs older than the cutoff.")
  model_config = ConfigDict(extra="forbid")


class RecoverStaleRequest(BaseModel):
  lease_timeout_seconds: int | None = Field(default=None, ge=1, description="Defaults to the configured lease timeout.")
  limit: int = Field(default=50, ge=1, le=500)
  model_config = ConfigDict(extra="forbid")


class ProcessStuckCasesRequest(BaseModel):
  stuck_threshold_hours: float = Field(default=24, gt=0)
  max_cases: int = Field(default=10, ge=1, le=200)
  dry_run: bool = False
  model_config = ConfigDict(extra="forbid")


class WebhookResponse(BaseModel):
  success: bool = True
  message: str
  data: dict[str, Any] = Field(default_factory=dict)


class CaseStatusResponse(BaseModel):
  """Polling view of a case's pipeline state."""

  status: Literal["pending", "processing", "completed", "failed"] | None
  last_update: str | None = Field(default=None, serialization_alias="lastUpdate")
  results: dict[str, Any] | None = None
  error: str | None = None
  can_retrigger: bool = Field(serialization_alias="canRetrigger")


class ReprocessResponse(BaseModel):
  success: bool = True
  case_id: str = Field(serialization_alias="caseId")
  job_id: str = Field(serialization_alias="jobId")
  status: Literal["pending"] = "pending"
