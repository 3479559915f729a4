"""StatusChannel implementations."""

from __future__ import annotations

import logging

from alegi.notifications.contracts import StatusChannel, StatusEvent
from alegi.notifications.live import ConnectionHub

logger = logging.getLogger(__name__)


class LiveStatusChannel(StatusChannel):
  def __init__(self, hub: ConnectionHub) -> None:
    self._hub = hub

  async def send(self, event: StatusEvent) -> None:
    delivered = await self._hub.broadcast(event)
    logger.debug("Status %s for case %s delivered to %s live connections", event.status, event.case_id, delivered)


class DurableOnlyStatusChannel(StatusChannel):
  """Used where connections cannot be held open; pollers read the case record instead."""

  async def send(self, event: StatusEvent) -> None:
    logger.debug("Live channel unavailable; case %s status %s is durable-only", event.case_id, event.status)
