"""Inbound case change events: structural validation and enqueue decisions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from alegi.cases.models import CaseRecord
from alegi.core.errors import CaseNotFoundError, InvalidStatusTransition, PermanentValidationError
from alegi.jobs.queue import JobQueue, utc_now
from alegi.notifications.service import CaseStatusNotifier
from alegi.storage.cases_repo import CasesRepository

logger = logging.getLogger(__name__)

SUPPORTED_TABLES = frozenset({"cases", "case_documents"})
SUPPORTED_TYPES = frozenset({"INSERT", "UPDATE", "DELETE"})
# Columns the pipeline writes itself; an UPDATE touching only these is our own write echoing back.
PIPELINE_OWNED_FIELDS = frozenset({"processing_status", "processing_error", "last_ai_update", "ai_processed", "updated_at", "case_type", "jurisdiction", "case_stage"})

MANUAL_PRIORITY = 10


class ChangeEvent(BaseModel):
  model_config = ConfigDict(extra="ignore", populate_by_name=True)

  type: str
  table: str
  record: dict[str, Any] | None = None
  db_schema: str | None = Field(default=None, alias="schema")
  old_record: dict[str, Any] | None = None

  @property
  def subject(self) -> dict[str, Any]:
    """Row the event is about; DELETE events carry it in old_record."""
    return self.record or self.old_record or {}

  @property
  def record_id(self) -> str:
    return str(self.subject["id"])

  @property
  def owner_id(self) -> str | None:
    subject = self.subject
    owner = subject.get("user_id") or subject.get("case_id")
    return None if owner is None else str(owner)

  def changed_fields(self) -> set[str]:
    if self.record is None or self.old_record is None:
      return set()
    keys = set(self.record) | set(self.old_record)
    return {key for key in keys if self.record.get(key) != self.old_record.get(key)}


def parse_change_event(payload: Any) -> ChangeEvent:
  """Validate the event envelope; malformed events are rejected before anything is enqueued."""
  if not isinstance(payload, dict):
    raise PermanentValidationError("Event body must be a JSON object")
  missing = [name for name in ("type", "table") if not payload.get(name)]
  if payload.get("record") is None and not (payload.get("type") == "DELETE" and payload.get("old_record")):
    missing.append("record")
  if missing:
    raise PermanentValidationError(f"Invalid webhook payload structure: missing {', '.join(missing)}", field=missing[0])

  try:
    event = ChangeEvent.model_validate(payload)
  except ValidationError as exc:
    raise PermanentValidationError(f"Invalid webhook payload: {exc.errors()[0].get('msg', 'invalid')}") from exc

  if event.type not in SUPPORTED_TYPES:
    raise PermanentValidationError(f"Unsupported event type: {event.type}", field="type")
  if event.table not in SUPPORTED_TABLES:
    raise PermanentValidationError(f"Unsupported table: {event.table}", field="table")
  if not event.subject.get("id"):
    raise PermanentValidationError("record.id is required", field="record.id")
  if event.owner_id is None:
    raise PermanentValidationError("record.user_id is required", field="record.user_id")
  return event


@dataclass(frozen=True)
class EnqueueOutcome:
  action: Literal["enqueued", "ignored"]
  case_id: str | None = None
  job_id: str | None = None
  reason: str | None = None

  def as_dict(self) -> dict[str, Any]:
    payload: dict[str, Any] = {"action": self.action}
    if self.case_id:
      payload["caseId"] = self.case_id
    if self.job_id:
      payload["jobId"] = self.job_id
    if self.reason:
      payload["reason"] = self.reason
    return payload


class CaseEventService:
  """Turns change events and manual requests into pipeline jobs."""

  def __init__(self, *, queue: JobQueue, notifier: CaseStatusNotifier, cases_repo: CasesRepository, queue_name: str, clock: Callable[[], datetime] = utc_now) -> None:
    self._queue = queue
    self._notifier = notifier
    self._cases_repo = cases_repo
    self._queue_name = queue_name
    self._clock = clock

  @property
  def queue_name(self) -> str:
    return self._queue_name

  async def handle(self, event: ChangeEvent, *, source: str) -> EnqueueOutcome:
    logger.info("Received %s %s event for record %s from %s", event.type, event.table, event.record_id, source)
    if event.table != "cases" or event.type not in {"INSERT", "UPDATE"}:
      return EnqueueOutcome(action="ignored", reason=f"{event.type} on {event.table} does not start a pipeline run")

    if event.type == "UPDATE":
      changed = event.changed_fields()
      if event.old_record is not None and changed <= PIPELINE_OWNED_FIELDS:
        logger.debug("Ignoring pipeline echo for case %s (changed: %s)", event.record_id, sorted(changed))
        return EnqueueOutcome(action="ignored", case_id=event.record_id, reason="only pipeline-owned fields changed")

    case = await self._cases_repo.get_case(event.record_id)
    if case is None:
      raise CaseNotFoundError(event.record_id)
    try:
      return await self.enqueue_case(case, source=source, trigger=f"webhook_{event.type.lower()}")
    except InvalidStatusTransition:
      logger.info("Case %s is already processing; event from %s not enqueued", case.id, source)
      return EnqueueOutcome(action="ignored", case_id=case.id, reason="case is already processing")

  async def enqueue_case(self, case: CaseRecord, *, source: str, trigger: str, priority: int = 0, force: bool = False) -> EnqueueOutcome:
    """Reset the case to pending and enqueue a run; InvalidStatusTransition while a run is in flight.

    A job that has not started working on the case yet is reused; the run reads the case when it starts.
    """
    latest = await self._queue.repo.find_latest_for_case(self._queue_name, case.id)
    if latest is not None and (latest.status == "pending" or (latest.status == "processing" and case.processing_status in {None, "pending"})):
      logger.info("Case %s already has %s job %s; %s from %s reuses it", case.id, latest.status, latest.id, trigger, source)
      return EnqueueOutcome(action="ignored", case_id=case.id, job_id=latest.id, reason=f"job already {latest.status}")
    await self._notifier.reset(case, force=force)
    job_id = await self._queue.enqueue(self._queue_name, {"case_id": case.id, "user_id": case.user_id, "source": source, "trigger": trigger}, priority=priority)
    return EnqueueOutcome(action="enqueued", case_id=case.id, job_id=job_id)

  async def requeue_stuck_cases(self, *, older_than: timedelta, limit: int, dry_run: bool = False) -> list[EnqueueOutcome]:
    """Re-run cases whose last pipeline update is older than the cutoff and that have no live job."""
    cutoff = self._clock() - older_than
    stuck = await self._cases_repo.find_stuck_cases(updated_before=cutoff, limit=limit)
    outcomes: list[EnqueueOutcome] = []
    for case in stuck:
      latest = await self._queue.repo.find_latest_for_case(self._queue_name, case.id)
      if latest is not None and latest.status in {"pending", "processing"}:
        outcomes.append(EnqueueOutcome(action="ignored", case_id=case.id, job_id=latest.id, reason=f"job already {latest.status}"))
        continue
      if dry_run:
        outcomes.append(EnqueueOutcome(action="ignored", case_id=case.id, reason="dry run"))
        continue
      try:
        # No live job is driving a processing case any more, so its status is forced back to pending.
        forced = case.processing_status == "processing"
        outcomes.append(await self.enqueue_case(case, source="sweep", trigger="stuck_case_recovery", priority=MANUAL_PRIORITY, force=forced))
      except InvalidStatusTransition:
        outcomes.append(EnqueueOutcome(action="ignored", case_id=case.id, reason="case is already processing"))
    logger.info("Stuck-case sweep found %s cases, enqueued %s", len(stuck), sum(1 for outcome in outcomes if outcome.action == "enqueued"))
    return outcomes
