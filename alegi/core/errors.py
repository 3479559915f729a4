"""Error taxonomy shared by the queue, the pipeline and the HTTP boundary."""

from __future__ import annotations

from typing import Any


class TransientExternalError(RuntimeError):
  """Network, timeout or 5xx failure from an external call; safe to retry."""

  def __init__(self, service: str, message: str, *, status_code: int | None = None) -> None:
    super().__init__(f"{service}: {message}")
    self.service = service
    self.status_code = status_code


class ExternalServiceError(RuntimeError):
  """External call failed in a way retrying will not fix (4xx, unusable output)."""

  def __init__(self, service: str, message: str, *, status_code: int | None = None) -> None:
    super().__init__(f"{service}: {message}")
    self.service = service
    self.status_code = status_code


class PermanentValidationError(ValueError):
  """Inbound payload is malformed or missing required fields."""

  def __init__(self, message: str, *, field: str | None = None) -> None:
    super().__init__(message)
    self.field = field


class RateLimitBackpressure(Exception):
  """Capacity is exhausted for a resource; the limiter waits, callers never see this raised."""

  def __init__(self, resource_key: str, retry_after: float) -> None:
    super().__init__(f"{resource_key} saturated; retry in {retry_after:.2f}s")
    self.resource_key = resource_key
    self.retry_after = retry_after


class PipelineStageFailure(RuntimeError):
  """A stage could not produce output."""

  def __init__(self, stage: str, message: str, *, detail: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.stage = stage
    self.detail = detail or {}

  @property
  def case_message(self) -> str:
    """Concise, user-visible error string for the case record."""
    return f"Pipeline failed at stage {self.stage}: {self}"


class InvalidStatusTransition(RuntimeError):
  def __init__(self, case_id: str, current: str | None, target: str) -> None:
    super().__init__(f"Case {case_id} cannot move from {current or 'unset'} to {target}")
    self.case_id = case_id
    self.current = current
    self.target = target


class CaseNotFoundError(LookupError):
  def __init__(self, case_id: str) -> None:
    super().__init__(f"Case {case_id} not found")
    self.case_id = case_id


class StageRegistryError(RuntimeError):
  """Stage graph and handler mapping disagree; raised at startup."""


class QueueEmpty:
  """Sentinel returned when no job is eligible; never raised."""

  _instance: QueueEmpty | None = None

  def __new__(cls) -> QueueEmpty:
    if cls._instance is None:
      cls._instance = super().__new__(cls)
    return cls._instance

  def __bool__(self) -> bool:
    return False

  def __repr__(self) -> str:
    return "QueueEmpty"


QUEUE_EMPTY = QueueEmpty()
