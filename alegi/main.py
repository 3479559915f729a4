from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from alegi.api.routes import cases, realtime, tasks, webhooks
from alegi.config import get_settings
from alegi.core.errors import CaseNotFoundError, InvalidStatusTransition, PermanentValidationError
from alegi.core.exceptions import (
  case_not_found_exception_handler,
  global_exception_handler,
  http_exception_handler,
  permanent_validation_exception_handler,
  request_validation_exception_handler,
  status_transition_exception_handler,
)
from alegi.core.lifespan import lifespan

settings = get_settings()

app = FastAPI(title="Alegi Engine", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(PermanentValidationError, permanent_validation_exception_handler)
app.add_exception_handler(InvalidStatusTransition, status_transition_exception_handler)
app.add_exception_handler(CaseNotFoundError, case_not_found_exception_handler)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(webhooks.router)
app.include_router(cases.router)
app.include_router(tasks.router)
app.include_router(realtime.router)
