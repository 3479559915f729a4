"""Text extraction for uploaded case documents."""

from __future__ import annotations

import logging

import httpx

from alegi.core.errors import ExternalServiceError, TransientExternalError
from alegi.ratelimit.executor import ThrottledExecutor

logger = logging.getLogger(__name__)

RESOURCE_KEY = "document-extraction"

_DOCUMENT_TYPES = ("complaint", "answer", "motion", "order", "judgment", "settlement", "contract", "agreement", "notice", "letter")


def infer_document_type(file_name: str) -> str:
  lowered = file_name.lower()
  return next((kind for kind in _DOCUMENT_TYPES if kind in lowered), "document")


class DocumentExtractor:
  """Posts a document URL to the extraction service and returns plain text."""

  def __init__(self, *, executor: ThrottledExecutor, endpoint: str, api_key: str | None = None, timeout_seconds: float = 60.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._executor = executor
    self._endpoint = endpoint
    self._headers = {"x-api-key": api_key} if api_key else {}
    self._timeout = timeout_seconds
    self._transport = transport

  async def extract_text(self, file_url: str) -> str:
    async def _call() -> str:
      async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
        try:
          response = await client.post(self._endpoint, json={"url": file_url, "inline": True}, headers=self._headers)
        except httpx.TimeoutException as exc:
          raise TransientExternalError(RESOURCE_KEY, "extraction timed out") from exc
        except httpx.TransportError as exc:
          raise TransientExternalError(RESOURCE_KEY, f"network error: {exc}") from exc
      if response.status_code == 429 or response.status_code >= 500:
        raise TransientExternalError(RESOURCE_KEY, f"extraction returned {response.status_code}", status_code=response.status_code)
      if response.status_code >= 400:
        raise ExternalServiceError(RESOURCE_KEY, f"extraction returned {response.status_code}", status_code=response.status_code)
      try:
        body = response.json()
      except ValueError as exc:
        raise ExternalServiceError(RESOURCE_KEY, "extraction returned a non-JSON body") from exc
      if not isinstance(body, dict) or body.get("error"):
        raise ExternalServiceError(RESOURCE_KEY, f"extraction failed: {body.get('message') if isinstance(body, dict) else body}")
      return str(body.get("text") or body.get("body") or "")

    text = await self._executor.call(RESOURCE_KEY, _call, operation="document extraction")
    logger.info("Extracted %s characters from %s", len(text), file_url)
    return text
