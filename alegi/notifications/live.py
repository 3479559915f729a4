"""In-process registry of live subscriber connections."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol

from alegi.notifications.contracts import StatusEvent

logger = logging.getLogger(__name__)

CaseAccessCheck = Callable[[str, str], Awaitable[bool]]


class LiveConnection(Protocol):
  async def send_json(self, data: Any) -> None: ...


@dataclass
class _ConnectionState:
  user_id: str
  case_ids: set[str] = field(default_factory=set)


class ConnectionHub:
  """Maps case ids and user ids to open connections; empty is the normal state."""

  def __init__(self) -> None:
    self._connections: dict[LiveConnection, _ConnectionState] = {}
    self._by_user: dict[str, set[LiveConnection]] = {}
    self._by_case: dict[str, set[LiveConnection]] = {}

  async def register(self, connection: LiveConnection, user_id: str) -> None:
    self._connections[connection] = _ConnectionState(user_id=user_id)
    self._by_user.setdefault(user_id, set()).add(connection)
    logger.info("Live connection registered for user %s (%s open)", user_id, len(self._connections))
    await connection.send_json({"type": "connection_established", "userId": user_id})

  def unregister(self, connection: LiveConnection) -> None:
    state = self._connections.pop(connection, None)
    if state is None:
      return
    for case_id in state.case_ids:
      self._discard(self._by_case, case_id, connection)
    self._discard(self._by_user, state.user_id, connection)
    logger.info("Live connection closed for user %s (%s open)", state.user_id, len(self._connections))

  def subscribe(self, connection: LiveConnection, case_id: str) -> None:
    state = self._connections.get(connection)
    if state is None:
      raise KeyError("Connection is not registered")
    state.case_ids.add(case_id)
    self._by_case.setdefault(case_id, set()).add(connection)

  def unsubscribe(self, connection: LiveConnection, case_id: str) -> None:
    state = self._connections.get(connection)
    if state is not None:
      state.case_ids.discard(case_id)
    self._discard(self._by_case, case_id, connection)

  async def handle_message(self, connection: LiveConnection, message: Any, *, can_access: CaseAccessCheck | None = None) -> None:
    """Apply one client message: subscribe_case, unsubscribe_case or ping."""
    state = self._connections.get(connection)
    if state is None:
      return
    if not isinstance(message, dict):
      await connection.send_json({"type": "error", "message": "Messages must be JSON objects"})
      return

    message_type = message.get("type")
    if message_type == "ping":
      await connection.send_json({"type": "pong"})
      return

    if message_type in {"subscribe_case", "unsubscribe_case"}:
      case_id = message.get("caseId")
      if not isinstance(case_id, str) or not case_id:
        await connection.send_json({"type": "error", "message": "caseId is required"})
        return
      if message_type == "unsubscribe_case":
        self.unsubscribe(connection, case_id)
        await connection.send_json({"type": "unsubscribed", "caseId": case_id})
        return
      if can_access is not None and not await can_access(state.user_id, case_id):
        await connection.send_json({"type": "error", "message": "Case not found", "caseId": case_id})
        return
      self.subscribe(connection, case_id)
      await connection.send_json({"type": "subscribed", "caseId": case_id})
      return

    await connection.send_json({"type": "error", "message": f"Unknown message type: {message_type}"})

  async def broadcast(self, event: StatusEvent) -> int:
    """Push the event to the case's subscribers and the owner's connections; return deliveries."""
    targets = set(self._by_case.get(event.case_id, ())) | set(self._by_user.get(event.user_id, ()))
    if not targets:
      return 0
    message = event.to_message()
    delivered = 0
    for connection in targets:
      try:
        await connection.send_json(message)
        delivered += 1
      except Exception as exc:  # noqa: BLE001
        logger.warning("Dropping live connection after send failure: %s", exc)
        self.unregister(connection)
    return delivered

  def stats(self) -> dict[str, int]:
    return {"connections": len(self._connections), "users": len(self._by_user), "subscribedCases": len(self._by_case)}

  @staticmethod
  def _discard(index: dict[str, set[LiveConnection]], key: str, connection: LiveConnection) -> None:
    members = index.get(key)
    if members is None:
      return
    members.discard(connection)
    if not members:
      index.pop(key, None)


@lru_cache(maxsize=1)
def get_connection_hub() -> ConnectionHub:
  """Process-wide hub shared by the websocket route and the live channel."""
  return ConnectionHub()
