"""Contracts for case status delivery."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from alegi.cases.models import ProcessingStatus


@dataclass(frozen=True)
class StatusEvent:
  """A case status transition, already durably recorded."""

  case_id: str
  user_id: str
  status: ProcessingStatus
  at: datetime
  case_name: str | None = None
  error: str | None = None
  results: dict[str, Any] | None = None

  def to_message(self) -> dict[str, Any]:
    message: dict[str, Any] = {"type": "status_update", "caseId": self.case_id, "status": self.status, "timestamp": self.at.strftime("%Y-%m-%dT%H:%M:%SZ")}
    if self.case_name:
      message["caseName"] = self.case_name
    if self.error:
      message["error"] = self.error
    if self.results is not None:
      message["results"] = self.results
    return message


class StatusChannel(Protocol):
  """Best-effort delivery of status events to live observers."""

  async def send(self, event: StatusEvent) -> None:
    """Deliver the event; a missing audience is not an error."""
