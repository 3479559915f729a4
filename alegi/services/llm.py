"""JSON completions over the OpenAI async client, throttled per model."""

from __future__ import annotations

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from alegi.core.errors import ExternalServiceError, TransientExternalError
from alegi.ratelimit.executor import ThrottledExecutor

logger = logging.getLogger(__name__)

_SERVICE = "openai"


def strip_json_fences(content: str) -> str:
  text = content.strip()
  if text.startswith("```"):
    text = text.split("\n", 1)[1] if "\n" in text else ""
    if text.rstrip().endswith("```"):
      text = text.rstrip()[:-3]
  return text.strip()


def parse_json_object(content: str) -> dict[str, Any]:
  try:
    parsed = json.loads(strip_json_fences(content))
  except json.JSONDecodeError as exc:
    raise ExternalServiceError(_SERVICE, f"returned invalid JSON: {exc}") from exc
  if not isinstance(parsed, dict):
    raise ExternalServiceError(_SERVICE, "returned JSON that is not an object")
  return parsed


class LLMClient:
  """Each call is admitted by the rate limiter under the model's resource key."""

  def __init__(self, *, executor: ThrottledExecutor, api_key: str | None = None, base_url: str | None = None, client: AsyncOpenAI | None = None) -> None:
    if client is None:
      if not api_key:
        raise ValueError("OPENAI_API_KEY is required for the LLM client")
      # Retries are owned by the executor so rate windows see every attempt.
      client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
    self._client = client
    self._executor = executor

  async def complete_json(self, *, model: str, system: str, prompt: str, operation: str) -> dict[str, Any]:
    async def _call() -> Any:
      try:
        return await self._client.chat.completions.create(
          model=model,
          messages=[{"role": "system", "content": system}, {"role": "user", "content": prompt}],
          response_format={"type": "json_object"},
          temperature=0.2,
        )
      except openai.APIConnectionError as exc:
        raise TransientExternalError(_SERVICE, str(exc) or "connection error") from exc
      except openai.RateLimitError as exc:
        raise TransientExternalError(_SERVICE, "rate limited by provider", status_code=exc.status_code) from exc
      except openai.InternalServerError as exc:
        raise TransientExternalError(_SERVICE, f"server error {exc.status_code}", status_code=exc.status_code) from exc
      except openai.APIStatusError as exc:
        raise ExternalServiceError(_SERVICE, f"request rejected with {exc.status_code}: {exc.message}", status_code=exc.status_code) from exc

    response = await self._executor.call(model, _call, payload_text=f"{system}\n{prompt}", operation=operation)
    content = response.choices[0].message.content or ""
    if response.usage:
      logger.debug("%s on %s used %s prompt / %s completion tokens", operation, model, response.usage.prompt_tokens, response.usage.completion_tokens)
    return parse_json_object(content)
