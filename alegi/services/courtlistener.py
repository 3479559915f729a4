"""CourtListener REST client and the case-law sources built on it."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from alegi.core.errors import ExternalServiceError, TransientExternalError
from alegi.ratelimit.executor import ThrottledExecutor

logger = logging.getLogger(__name__)

RESOURCE_KEY = "courtlistener"
_MAX_OPINION_CHARS = 12000


def normalize_hit(hit: dict[str, Any], source: str) -> dict[str, Any]:
  """Flatten a search hit into the fields the analysis stages use."""
  opinions = hit.get("opinions") or []
  first_opinion = opinions[0] if opinions and isinstance(opinions[0], dict) else {}
  citation = hit.get("citation")
  if isinstance(citation, list):
    citation = citation[0] if citation else None
  return {
    "source": source,
    "case_name": hit.get("caseName") or hit.get("case_name"),
    "court": hit.get("court") or hit.get("court_id"),
    "date_filed": hit.get("dateFiled") or hit.get("date_filed"),
    "citation": citation,
    "url": hit.get("absolute_url"),
    "snippet": first_opinion.get("snippet") or hit.get("snippet"),
    "opinion_id": first_opinion.get("id") or hit.get("id"),
  }


class CourtListenerClient:
  def __init__(self, *, executor: ThrottledExecutor, base_url: str, api_key: str | None, timeout_seconds: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._executor = executor
    self._base_url = base_url.rstrip("/")
    self._headers = {"Authorization": f"Token {api_key}"} if api_key else {}
    self._timeout = timeout_seconds
    self._transport = transport

  async def search(self, query: str, *, search_type: str = "o", court: str | None = None, filed_after: str | None = None, page_size: int = 10) -> list[dict[str, Any]]:
    params: dict[str, Any] = {"q": query, "type": search_type, "order_by": "score desc", "page_size": page_size}
    if court:
      params["court"] = court
    if filed_after:
      params["filed_after"] = filed_after
    payload = await self._get("/search/", params, operation=f"case-law search ({search_type})")
    results = payload.get("results") or []
    return [hit for hit in results if isinstance(hit, dict)]

  async def fetch_opinion_text(self, opinion_id: int | str) -> str:
    payload = await self._get(f"/opinions/{opinion_id}/", {}, operation="opinion fetch")
    text = payload.get("plain_text") or payload.get("html_with_citations") or ""
    return str(text)[:_MAX_OPINION_CHARS]

  async def _get(self, path: str, params: dict[str, Any], *, operation: str) -> dict[str, Any]:
    async def _call() -> dict[str, Any]:
      async with httpx.AsyncClient(base_url=self._base_url, headers=self._headers, timeout=self._timeout, transport=self._transport) as client:
        try:
          response = await client.get(path, params=params)
        except httpx.TimeoutException as exc:
          raise TransientExternalError(RESOURCE_KEY, f"{operation} timed out") from exc
        except httpx.TransportError as exc:
          raise TransientExternalError(RESOURCE_KEY, f"{operation} network error: {exc}") from exc
      if response.status_code == 429 or response.status_code >= 500:
        raise TransientExternalError(RESOURCE_KEY, f"{operation} returned {response.status_code}", status_code=response.status_code)
      if response.status_code >= 400:
        raise ExternalServiceError(RESOURCE_KEY, f"{operation} returned {response.status_code}", status_code=response.status_code)
      try:
        body = response.json()
      except ValueError as exc:
        raise ExternalServiceError(RESOURCE_KEY, f"{operation} returned a non-JSON body") from exc
      return body if isinstance(body, dict) else {}

    return await self._executor.call(RESOURCE_KEY, _call, operation=operation)


class CourtListenerSource:
  """One searchable CourtListener collection (opinions or RECAP dockets)."""

  def __init__(self, client: CourtListenerClient, *, name: str, search_type: str, page_size: int = 10) -> None:
    self.name = name
    self._client = client
    self._search_type = search_type
    self._page_size = page_size

  async def search(self, query: str, *, court: str | None = None, filed_after: str | None = None) -> list[dict[str, Any]]:
    hits = await self._client.search(query, search_type=self._search_type, court=court, filed_after=filed_after, page_size=self._page_size)
    return [normalize_hit(hit, self.name) for hit in hits]
