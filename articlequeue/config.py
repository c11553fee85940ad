"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from articlequeue.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_STORAGE_BACKENDS = {"postgres", "memory"}
_GENERATORS = {"dummy", "openai"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the article queue service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  storage_backend: str
  pg_dsn: str | None
  pg_connect_timeout: int
  auto_create_tables: bool
  jobs_auto_process: bool
  job_concurrency: int
  global_max_in_flight: int
  item_timeout_seconds: float
  max_batch_items: int
  max_active_jobs_per_owner: int
  sweep_interval_seconds: float
  generator: str
  openai_api_key: str | None
  openai_base_url: str | None
  openai_model: str
  article_dir: str
  dummy_delay_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("ARTICLEQUEUE_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("ARTICLEQUEUE_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("ARTICLEQUEUE_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_int(name: str, default: str, *, minimum: int, maximum: int | None = None) -> int:
  raw = os.getenv(name, default)
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer.") from exc
  if value < minimum:
    raise ValueError(f"{name} must be at least {minimum}.")
  if maximum is not None and value > maximum:
    raise ValueError(f"{name} must be at most {maximum}.")
  return value


def _parse_seconds(name: str, default: str) -> float:
  raw = os.getenv(name, default)
  try:
    value = float(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be a number of seconds.") from exc
  if value < 0:
    raise ValueError(f"{name} must not be negative.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("ARTICLEQUEUE_ENV", "development").strip().lower()
  debug = _parse_bool(os.getenv("ARTICLEQUEUE_DEBUG"))

  log_max_bytes = _parse_int("ARTICLEQUEUE_LOG_MAX_BYTES", "5242880", minimum=1)  # 5MB default
  log_backup_count = _parse_int("ARTICLEQUEUE_LOG_BACKUP_COUNT", "10", minimum=0)

  storage_backend = os.getenv("ARTICLEQUEUE_STORAGE_BACKEND", "postgres").strip().lower()
  if storage_backend not in _STORAGE_BACKENDS:
    raise ValueError(f"ARTICLEQUEUE_STORAGE_BACKEND must be one of: {', '.join(sorted(_STORAGE_BACKENDS))}.")

  pg_dsn = _optional_str(os.getenv("ARTICLEQUEUE_PG_DSN"))
  # The postgres backend cannot start without a DSN.
  if storage_backend == "postgres" and not pg_dsn:
    raise ValueError("ARTICLEQUEUE_PG_DSN must be set when ARTICLEQUEUE_STORAGE_BACKEND=postgres.")

  generator = os.getenv("ARTICLEQUEUE_GENERATOR", "dummy").strip().lower()
  if generator not in _GENERATORS:
    raise ValueError(f"ARTICLEQUEUE_GENERATOR must be one of: {', '.join(sorted(_GENERATORS))}.")

  openai_api_key = _optional_str(os.getenv("ARTICLEQUEUE_OPENAI_API_KEY"))
  if generator == "openai" and not openai_api_key:
    raise ValueError("ARTICLEQUEUE_OPENAI_API_KEY must be set when ARTICLEQUEUE_GENERATOR=openai.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("ARTICLEQUEUE_ALLOWED_ORIGINS")),
    log_dir=os.getenv("ARTICLEQUEUE_LOG_DIR", "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("ARTICLEQUEUE_LOG_HTTP_4XX")),
    storage_backend=storage_backend,
    pg_dsn=pg_dsn,
    pg_connect_timeout=_parse_int("ARTICLEQUEUE_PG_CONNECT_TIMEOUT", "10", minimum=1),
    auto_create_tables=_parse_bool(os.getenv("ARTICLEQUEUE_AUTO_CREATE_TABLES")),
    jobs_auto_process=_parse_bool(os.getenv("ARTICLEQUEUE_JOBS_AUTO_PROCESS"), default=True),
    # Keep the per-job bound small; the downstream writer is rate limited.
    job_concurrency=_parse_int("ARTICLEQUEUE_JOB_CONCURRENCY", "3", minimum=1, maximum=10),
    global_max_in_flight=_parse_int("ARTICLEQUEUE_GLOBAL_MAX_IN_FLIGHT", "0", minimum=0),
    item_timeout_seconds=_parse_seconds("ARTICLEQUEUE_ITEM_TIMEOUT_SECONDS", "600"),
    max_batch_items=_parse_int("ARTICLEQUEUE_MAX_BATCH_ITEMS", "50", minimum=1),
    max_active_jobs_per_owner=_parse_int("ARTICLEQUEUE_MAX_ACTIVE_JOBS_PER_OWNER", "5", minimum=0),
    sweep_interval_seconds=_parse_seconds("ARTICLEQUEUE_SWEEP_INTERVAL_SECONDS", "5"),
    generator=generator,
    openai_api_key=openai_api_key,
    openai_base_url=_optional_str(os.getenv("ARTICLEQUEUE_OPENAI_BASE_URL")),
    openai_model=(os.getenv("ARTICLEQUEUE_OPENAI_MODEL") or "gpt-4o-mini").strip(),
    article_dir=os.getenv("ARTICLEQUEUE_ARTICLE_DIR", "./articles").strip(),
    dummy_delay_seconds=_parse_seconds("ARTICLEQUEUE_DUMMY_DELAY_SECONDS", "0"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings the database layer needs."""

  return DatabaseSettings(
    debug=_parse_bool(os.getenv("ARTICLEQUEUE_DEBUG")),
    pg_dsn=_optional_str(os.getenv("ARTICLEQUEUE_PG_DSN")),
    pg_connect_timeout=_parse_int("ARTICLEQUEUE_PG_CONNECT_TIMEOUT", "10", minimum=1),
  )
