"""Storage interface for batch jobs and their queue items."""

from __future__ import annotations

from typing import Any, Protocol

from articlequeue.jobs.models import ItemStatus, JobEventRecord, JobRecord, JobStatus, QueueItemRecord


class JobsRepository(Protocol):
  """Repository contract for job persistence.

  Methods returning ``None`` signal that the job (or item) no longer exists.
  """

  async def create_job(self, job: JobRecord, items: list[QueueItemRecord]) -> None:
    """Persist a job and all of its items atomically."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def list_items(self, job_id: str) -> list[QueueItemRecord]:
    """Return a job's items ordered by sequence."""

  async def list_jobs_for_owner(self, owner_id: str, limit: int) -> list[JobRecord]:
    """Return an owner's jobs, newest first."""

  async def find_jobs_by_status(self, status: JobStatus, limit: int = 10) -> list[JobRecord]:
    """Return jobs in a status, oldest first."""

  async def count_active_jobs(self, owner_id: str) -> int:
    """Count an owner's pending or processing jobs."""

  async def update_job(
    self,
    job_id: str,
    *,
    status: JobStatus | None = None,
    cancel_requested: bool | None = None,
    completed_at: str | None = None,
    error: str | None = None,
    updated_at: str | None = None,
  ) -> JobRecord | None:
    """Apply partial updates to a job."""

  async def mark_item_processing(self, item_id: str, *, started_at: str) -> QueueItemRecord | None:
    """Move a pending item to processing."""

  async def record_item_outcome(
    self,
    job_id: str,
    item_id: str,
    *,
    status: ItemStatus,
    finished_at: str,
    result_ref: str | None = None,
    error: str | None = None,
  ) -> JobRecord | None:
    """Resolve an item and bump the matching job counter in one transaction.

    Items that are already resolved are left untouched and the job is
    returned unchanged.
    """

  async def fail_job(self, job_id: str, *, error: str, finished_at: str, item_error: str) -> JobRecord | None:
    """Fail every unresolved item and the job itself in one transaction."""

  async def append_event(self, job_id: str, *, event_type: str, message: str, payload: dict[str, Any] | None = None) -> None:
    """Append one timeline event for a job."""

  async def list_events(self, job_id: str, limit: int = 100) -> list[JobEventRecord]:
    """Return a job's most recent events in chronological order."""
