import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from alegi.core.database import dispose_engine
from alegi.core.firebase import initialize_firebase
from alegi.core.logging import initialize_logging
from alegi.notifications.factory import get_status_channel
from alegi.pipeline.graph import CASE_PIPELINE, validate_stage_graph
from alegi.pipeline.stages import CaseStages
from fastapi import FastAPI


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, check the stage registry and select the status channel."""
  from alegi.config import get_settings

  # Load settings for startup initialization.
  settings = get_settings()
  logger = logging.getLogger("alegi.core.lifespan")
  initialize_logging(settings)
  logger.info("Startup: environment=%s queue=%s", settings.environment, settings.queue_name)

  # Refuse to start with a stage that has no handler.
  validate_stage_graph(CASE_PIPELINE, CaseStages.unbound_handlers())

  app.state.status_channel = get_status_channel()
  logger.info("Status channel: %s", type(app.state.status_channel).__name__)

  # Initialize Firebase before handling requests.
  initialize_firebase()
  try:
    yield
  finally:
    await dispose_engine()
    logger.info("Shutdown complete.")
