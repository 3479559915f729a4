"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from alegi.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class RateLimit:
  """Per-resource request and token ceilings over a one-minute window."""

  rpm: int
  tpm: int


# Development mirrors the provider ceilings; production keeps headroom below them.
_DEVELOPMENT_RATE_LIMITS: dict[str, RateLimit] = {
  "gpt-4": RateLimit(rpm=15, tpm=150_000),
  "gpt-4-turbo": RateLimit(rpm=15, tpm=150_000),
  "gpt-4o": RateLimit(rpm=20, tpm=200_000),
  "gpt-4o-mini": RateLimit(rpm=40, tpm=300_000),
  "courtlistener": RateLimit(rpm=60, tpm=10_000_000),
  "document-extraction": RateLimit(rpm=30, tpm=10_000_000),
}
_PRODUCTION_RATE_LIMITS: dict[str, RateLimit] = {
  "gpt-4": RateLimit(rpm=10, tpm=100_000),
  "gpt-4-turbo": RateLimit(rpm=10, tpm=100_000),
  "gpt-4o": RateLimit(rpm=15, tpm=150_000),
  "gpt-4o-mini": RateLimit(rpm=30, tpm=200_000),
  "courtlistener": RateLimit(rpm=40, tpm=10_000_000),
  "document-extraction": RateLimit(rpm=20, tpm=10_000_000),
}
_DEFAULT_RATE_LIMITS = {"development": RateLimit(rpm=15, tpm=150_000), "production": RateLimit(rpm=10, tpm=100_000)}

_DEFAULT_STAGE_MODELS: dict[str, str] = {
  "intake_analysis": "gpt-4o-mini",
  "jurisdiction_analysis": "gpt-4o",
  "case_enhancement": "gpt-4o",
  "opinion_analysis": "gpt-4o",
  "complexity_score": "gpt-4o-mini",
  "outcome_prediction": "gpt-4o",
  "supplementary_analysis": "gpt-4-turbo",
}

_TASK_PROVIDERS = {"none", "local-http", "gcp"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Alegi engine."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  webhook_secret: str | None
  internal_service_name: str
  internal_service_secret: str | None
  queue_name: str
  queue_base_delay_seconds: float
  queue_max_delay_seconds: float
  queue_max_attempts: int
  worker_batch_size: int
  job_lease_timeout_seconds: int
  job_retention_hours: int
  min_call_interval_seconds: float
  external_call_timeout_seconds: float
  external_max_retries: int
  external_retry_base_seconds: float
  external_retry_max_seconds: float
  characters_per_token: int
  rate_limits: dict[str, RateLimit] = field(hash=False)
  default_rate_limit: RateLimit
  stage_models: dict[str, str] = field(hash=False)
  openai_api_key: str | None
  openai_base_url: str | None
  courtlistener_api_key: str | None
  courtlistener_base_url: str
  courtlistener_timeout_seconds: float
  document_extraction_url: str | None
  document_extraction_api_key: str | None
  realtime_enabled: bool
  task_service_provider: str
  internal_service_url: str | None
  cloud_tasks_queue_path: str | None
  firebase_project_id: str | None

  def rate_limit_for(self, resource_key: str) -> RateLimit:
    """Return the configured ceiling for a resource, falling back to the default."""
    return self.rate_limits.get(resource_key, self.default_rate_limit)

  def model_for(self, stage: str) -> str:
    return self.stage_models.get(stage, "gpt-4o")


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("ALEGI_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("ALEGI_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("ALEGI_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_json_dict(name: str, raw: str | None) -> dict[str, Any]:
  if not raw:
    return {}
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError as exc:
    raise ValueError(f"{name} must be a JSON object.") from exc
  if not isinstance(parsed, dict):
    raise ValueError(f"{name} must be a JSON object.")
  return parsed


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _resolve_rate_limits(environment: str, overrides: dict[str, Any]) -> dict[str, RateLimit]:
  """Pick the environment's limit table and apply JSON overrides of the form {"gpt-4o": {"rpm": 10, "tpm": 90000}}."""
  base = _PRODUCTION_RATE_LIMITS if environment == "production" else _DEVELOPMENT_RATE_LIMITS
  limits = dict(base)
  for resource_key, raw_limit in overrides.items():
    if not isinstance(raw_limit, dict):
      raise ValueError(f"ALEGI_RATE_LIMITS entry for {resource_key} must be an object.")
    current = limits.get(resource_key) or _DEFAULT_RATE_LIMITS.get(environment, _DEFAULT_RATE_LIMITS["development"])
    rpm = int(raw_limit.get("rpm", current.rpm))
    tpm = int(raw_limit.get("tpm", current.tpm))
    if rpm <= 0 or tpm <= 0:
      raise ValueError(f"ALEGI_RATE_LIMITS entry for {resource_key} must use positive limits.")
    limits[resource_key] = RateLimit(rpm=rpm, tpm=tpm)
  return limits


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("ALEGI_ENV", "development").strip().lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("ALEGI_DEBUG"))

  log_max_bytes = _positive_int("ALEGI_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("ALEGI_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("ALEGI_LOG_BACKUP_COUNT must be zero or a positive integer.")

  queue_base_delay_seconds = _positive_float("ALEGI_QUEUE_BASE_DELAY_SECONDS", "2")
  queue_max_delay_seconds = _positive_float("ALEGI_QUEUE_MAX_DELAY_SECONDS", "300")
  if queue_max_delay_seconds < queue_base_delay_seconds:
    raise ValueError("ALEGI_QUEUE_MAX_DELAY_SECONDS must not be smaller than ALEGI_QUEUE_BASE_DELAY_SECONDS.")

  external_retry_base_seconds = _positive_float("ALEGI_EXTERNAL_RETRY_BASE_SECONDS", "2")
  external_retry_max_seconds = _positive_float("ALEGI_EXTERNAL_RETRY_MAX_SECONDS", "30")
  external_max_retries = int(os.getenv("ALEGI_EXTERNAL_MAX_RETRIES", "3"))
  if external_max_retries < 0:
    raise ValueError("ALEGI_EXTERNAL_MAX_RETRIES must be zero or a positive integer.")

  min_call_interval_seconds = float(os.getenv("ALEGI_MIN_CALL_INTERVAL_SECONDS", "1"))
  if min_call_interval_seconds < 0:
    raise ValueError("ALEGI_MIN_CALL_INTERVAL_SECONDS must not be negative.")

  task_service_provider = os.getenv("ALEGI_TASK_SERVICE_PROVIDER", "none").strip().lower()
  if task_service_provider not in _TASK_PROVIDERS:
    raise ValueError(f"ALEGI_TASK_SERVICE_PROVIDER must be one of {sorted(_TASK_PROVIDERS)}.")

  stage_models = dict(_DEFAULT_STAGE_MODELS)
  stage_models.update({str(key): str(value) for key, value in _parse_json_dict("ALEGI_STAGE_MODELS", os.getenv("ALEGI_STAGE_MODELS")).items()})

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("ALEGI_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
    log_http_4xx=_parse_bool(os.getenv("ALEGI_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("ALEGI_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("ALEGI_PG_CONNECT_TIMEOUT", "5"),
    webhook_secret=_optional_str(os.getenv("ALEGI_WEBHOOK_SECRET")),
    internal_service_name=(os.getenv("ALEGI_INTERNAL_SERVICE_NAME") or "alegi-backend").strip(),
    internal_service_secret=_optional_str(os.getenv("ALEGI_INTERNAL_SERVICE_SECRET")),
    queue_name=(os.getenv("ALEGI_QUEUE_NAME") or "case-processing").strip(),
    queue_base_delay_seconds=queue_base_delay_seconds,
    queue_max_delay_seconds=queue_max_delay_seconds,
    queue_max_attempts=_positive_int("ALEGI_QUEUE_MAX_ATTEMPTS", "3"),
    worker_batch_size=_positive_int("ALEGI_WORKER_BATCH_SIZE", "5"),
    job_lease_timeout_seconds=_positive_int("ALEGI_JOB_LEASE_TIMEOUT_SECONDS", "900"),
    job_retention_hours=_positive_int("ALEGI_JOB_RETENTION_HOURS", "24"),
    min_call_interval_seconds=min_call_interval_seconds,
    external_call_timeout_seconds=_positive_float("ALEGI_EXTERNAL_CALL_TIMEOUT_SECONDS", "120"),
    external_max_retries=external_max_retries,
    external_retry_base_seconds=external_retry_base_seconds,
    external_retry_max_seconds=external_retry_max_seconds,
    characters_per_token=_positive_int("ALEGI_CHARACTERS_PER_TOKEN", "4"),
    rate_limits=_resolve_rate_limits(environment, _parse_json_dict("ALEGI_RATE_LIMITS", os.getenv("ALEGI_RATE_LIMITS"))),
    default_rate_limit=_DEFAULT_RATE_LIMITS.get(environment, _DEFAULT_RATE_LIMITS["development"]),
    stage_models=stage_models,
    openai_api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
    openai_base_url=_optional_str(os.getenv("OPENAI_BASE_URL")),
    courtlistener_api_key=_optional_str(os.getenv("COURTLISTENER_API_KEY")),
    courtlistener_base_url=(os.getenv("COURTLISTENER_BASE_URL") or "https://www.courtlistener.com/api/rest/v4").strip().rstrip("/"),
    courtlistener_timeout_seconds=_positive_float("COURTLISTENER_TIMEOUT_SECONDS", "30"),
    document_extraction_url=_optional_str(os.getenv("ALEGI_DOCUMENT_EXTRACTION_URL")),
    document_extraction_api_key=_optional_str(os.getenv("ALEGI_DOCUMENT_EXTRACTION_API_KEY")),
    realtime_enabled=_parse_bool(os.getenv("ALEGI_REALTIME_ENABLED")),
    task_service_provider=task_service_provider,
    internal_service_url=_optional_str(os.getenv("ALEGI_INTERNAL_SERVICE_URL")),
    cloud_tasks_queue_path=_optional_str(os.getenv("ALEGI_CLOUD_TASKS_QUEUE_PATH")),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  return DatabaseSettings(
    debug=_parse_bool(os.getenv("ALEGI_DEBUG")),
    pg_dsn=os.getenv("ALEGI_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("ALEGI_PG_CONNECT_TIMEOUT", "5"),
  )
