from __future__ import annotations

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from alegi.api.deps import get_cases_repo
from alegi.config import Settings, get_settings
from alegi.core.security import resolve_principal
from alegi.notifications.factory import live_channel_supported
from alegi.notifications.live import get_connection_hub
from alegi.storage.cases_repo import CasesRepository

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


def _bearer_token(websocket: WebSocket) -> str | None:
  token = websocket.query_params.get("token")
  if token:
    return token
  authorization = websocket.headers.get("authorization") or ""
  scheme, _, credentials = authorization.partition(" ")
  if scheme.lower() == "bearer" and credentials:
    return credentials.strip()
  return None


@router.websocket("/ws")
async def case_status_socket(websocket: WebSocket, settings: Annotated[Settings, Depends(get_settings)], cases_repo: Annotated[CasesRepository, Depends(get_cases_repo)]) -> None:
  """Live status_update stream for the authenticated user's cases."""
  if not live_channel_supported(settings):
    await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Live status is disabled; poll the status endpoint")
    return
  token = _bearer_token(websocket)
  principal = await resolve_principal(token) if token else None
  if principal is None:
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication required")
    return

  async def can_access(user_id: str, case_id: str) -> bool:
    case = await cases_repo.get_case(case_id)
    return case is not None and case.user_id == user_id

  hub = get_connection_hub()
  await websocket.accept()
  await hub.register(websocket, principal.user_id)
  try:
    while True:
      raw = await websocket.receive_text()
      try:
        message = json.loads(raw)
      except json.JSONDecodeError:
        await websocket.send_json({"type": "error", "message": "Invalid JSON"})
        continue
      await hub.handle_message(websocket, message, can_access=can_access)
  except WebSocketDisconnect:
    logger.debug("Live connection for user %s disconnected", principal.user_id)
  finally:
    hub.unregister(websocket)
