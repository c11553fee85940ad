from articlequeue.config import Settings
from articlequeue.storage.jobs_repo import JobsRepository
from articlequeue.storage.memory_jobs_repo import InMemoryJobsRepository


def _get_jobs_repo(settings: Settings) -> JobsRepository:
  """Return the active jobs repository."""

  if settings.storage_backend == "memory":
    return InMemoryJobsRepository()

  # Postgres is the default; the DSN was validated when settings loaded.
  if not settings.pg_dsn:
    raise ValueError("ARTICLEQUEUE_PG_DSN must be set to enable Postgres persistence.")

  from articlequeue.storage.postgres_jobs_repo import PostgresJobsRepository

  return PostgresJobsRepository()
