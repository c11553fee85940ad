import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from articlequeue.core.database import create_tables, dispose_engine
from articlequeue.core.logging import _initialize_logging
from articlequeue.jobs.factory import build_queue_manager

_SHUTDOWN_GRACE_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, storage and the queue manager for the app's lifetime."""
  from articlequeue.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("articlequeue.core.lifespan")
  _initialize_logging(settings)
  logger.info("Starting articlequeue environment=%s storage=%s generator=%s", settings.environment, settings.storage_backend, settings.generator)

  if settings.storage_backend == "postgres":
    logger.info("Using Postgres at %s", _redact_dsn(settings.pg_dsn))
    if settings.auto_create_tables:
      # Development convenience; production schemas come from alembic.
      await create_tables()
      logger.info("Database tables ensured.")

  manager = build_queue_manager(settings)
  app.state.queue_manager = manager
  await manager.start()
  logger.info("Queue manager started (concurrency=%d, item_timeout=%ss).", settings.job_concurrency, settings.item_timeout_seconds)

  try:
    yield
  finally:
    await manager.stop(_SHUTDOWN_GRACE_SECONDS)
    app.state.queue_manager = None
    if settings.storage_backend == "postgres":
      await dispose_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
