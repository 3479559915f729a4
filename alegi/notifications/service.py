"""Case status state machine: durable write first, then best-effort live delivery."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from alegi.cases.models import CaseRecord, ProcessingStatus
from alegi.core.errors import CaseNotFoundError, InvalidStatusTransition
from alegi.notifications.contracts import StatusChannel, StatusEvent
from alegi.storage.cases_repo import CasesRepository

logger = logging.getLogger(__name__)

# Within a run the machine only moves forward; repeating "processing" refreshes the timestamp on a job retry.
ALLOWED_PREDECESSORS: dict[ProcessingStatus, tuple[ProcessingStatus | None, ...]] = {
  "pending": (None, "pending"),
  "processing": ("pending", "processing"),
  "completed": ("processing",),
  "failed": ("processing",),
}
# A new run may start from any resting state; "processing" only when forced by the stuck-case sweep.
_RESET_FROM: tuple[ProcessingStatus | None, ...] = (None, "pending", "completed", "failed")


def _utc_now() -> datetime:
  return datetime.now(UTC)


class CaseStatusNotifier:
  """Single writer of case processing_status."""

  def __init__(self, *, cases_repo: CasesRepository, channel: StatusChannel, clock: Callable[[], datetime] = _utc_now) -> None:
    self._cases_repo = cases_repo
    self._channel = channel
    self._clock = clock

  @property
  def channel(self) -> StatusChannel:
    return self._channel

  async def transition(self, case: CaseRecord, status: ProcessingStatus, *, error: str | None = None, results: dict[str, Any] | None = None) -> CaseRecord:
    """Move the case to status; durable write failures propagate, delivery failures are logged."""
    return await self._write(case, status, allowed_from=ALLOWED_PREDECESSORS[status], error=error, results=results)

  async def reset(self, case: CaseRecord, *, force: bool = False) -> CaseRecord:
    """Start a new run by returning the case to pending."""
    allowed = _RESET_FROM + (("processing",) if force else ())
    return await self._write(case, "pending", allowed_from=allowed)

  async def _write(self, case: CaseRecord, status: ProcessingStatus, *, allowed_from: tuple[ProcessingStatus | None, ...], error: str | None = None, results: dict[str, Any] | None = None) -> CaseRecord:
    at = self._clock()
    updated = await self._cases_repo.transition_status(
      case.id,
      status=status,
      allowed_from=allowed_from,
      at=at,
      error=error if status == "failed" else None,
      ai_processed=True if status == "completed" else None,
    )
    if updated is None:
      current = await self._cases_repo.get_case(case.id)
      if current is None:
        raise CaseNotFoundError(case.id)
      raise InvalidStatusTransition(case.id, current.processing_status, status)

    logger.info("Case %s status -> %s", case.id, status)
    event = StatusEvent(case_id=updated.id, user_id=updated.user_id, status=status, at=at, case_name=updated.case_name, error=updated.processing_error, results=results)
    await self._deliver(event)
    return updated

  async def _deliver(self, event: StatusEvent) -> None:
    try:
      await self._channel.send(event)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Live status delivery failed for case %s: %s", event.case_id, exc, exc_info=True)
