"""Startup selection of the status channel."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from functools import lru_cache

from alegi.config import Settings, get_settings
from alegi.notifications.channels import DurableOnlyStatusChannel, LiveStatusChannel
from alegi.notifications.contracts import StatusChannel
from alegi.notifications.live import ConnectionHub, get_connection_hub

logger = logging.getLogger(__name__)

# Hosts that run each request in a short-lived function and cannot keep sockets open.
_EPHEMERAL_HOST_MARKERS = ("VERCEL", "AWS_LAMBDA_FUNCTION_NAME", "FUNCTION_TARGET")


def live_channel_supported(settings: Settings, environ: Mapping[str, str] | None = None) -> bool:
  env = os.environ if environ is None else environ
  if not settings.realtime_enabled:
    return False
  marker = next((name for name in _EPHEMERAL_HOST_MARKERS if env.get(name)), None)
  if marker:
    logger.warning("ALEGI_REALTIME_ENABLED is set but %s indicates an ephemeral host; using durable-only status", marker)
    return False
  return True


def build_status_channel(settings: Settings, *, hub: ConnectionHub | None = None, environ: Mapping[str, str] | None = None) -> StatusChannel:
  if live_channel_supported(settings, environ):
    return LiveStatusChannel(hub or get_connection_hub())
  return DurableOnlyStatusChannel()


@lru_cache(maxsize=1)
def get_status_channel() -> StatusChannel:
  channel = build_status_channel(get_settings())
  logger.info("Status channel selected: %s", type(channel).__name__)
  return channel
