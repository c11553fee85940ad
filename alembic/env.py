import asyncio
import logging
import sys
from logging.config import fileConfig
from pathlib import Path
from time import perf_counter

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

# Migrations run from the repository root without installing the package.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

config = context.config
if config.config_file_name is not None:
  fileConfig(config.config_file_name)

# Table classes register on Base.metadata at import time.
import articlequeue.schema  # noqa: E402, F401
from articlequeue.core.database import Base, database_url  # noqa: E402

target_metadata = Base.metadata
logger = logging.getLogger("alembic.runtime.migration")


class _RevisionTimer:
  """Logs how long each revision took to apply."""

  def __init__(self) -> None:
    self.started = perf_counter()

  def __call__(self, *, ctx: object, step: object, heads: set[str], run_args: dict[str, object]) -> None:
    now = perf_counter()
    revision = getattr(step, "up_revision_id", None) or "unknown"
    logger.info("Applied %s in %.3fs", revision, now - self.started)
    self.started = now


def _queue_database_url() -> str:
  url = database_url()
  if not url:
    raise RuntimeError("ARTICLEQUEUE_PG_DSN must be set to run migrations.")
  return url


def run_migrations_offline() -> None:
  context.configure(url=_queue_database_url(), target_metadata=target_metadata, literal_binds=True, dialect_opts={"paramstyle": "named"}, compare_type=True)
  with context.begin_transaction():
    context.run_migrations()


def _migrate(connection: Connection) -> None:
  timer = _RevisionTimer()
  context.configure(connection=connection, target_metadata=target_metadata, compare_type=True, on_version_apply=timer)
  migration_context = context.get_context()
  logger.info("Migrating article queue tables from %s", migration_context.get_current_revision() or "base")
  with context.begin_transaction():
    context.run_migrations()
  logger.info("Article queue tables at %s", ", ".join(migration_context.get_current_heads()) or "base")


async def run_async_migrations() -> None:
  """Migrate through the same asyncpg driver the service uses."""
  section = config.get_section(config.config_ini_section) or {}
  section["sqlalchemy.url"] = _queue_database_url()
  engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
  try:
    async with engine.connect() as connection:
      await connection.run_sync(_migrate)
  finally:
    await engine.dispose()


if context.is_offline_mode():
  run_migrations_offline()
else:
  asyncio.run(run_async_migrations())
