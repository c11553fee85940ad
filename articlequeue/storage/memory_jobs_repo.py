"""In-process jobs repository used for local development and tests."""

from __future__ import annotations

import copy
from dataclasses import replace
from typing import Any

from articlequeue.jobs.models import ACTIVE_JOB_STATUSES, TERMINAL_ITEM_STATUSES, ItemStatus, JobEventRecord, JobRecord, JobStatus, QueueItemRecord, utc_timestamp
from articlequeue.jobs.progress import rollup_status
from articlequeue.storage.jobs_repo import JobsRepository


class InMemoryJobsRepository(JobsRepository):
  """Keep jobs, items and events in dictionaries.

  Every read returns a copy so callers never share state with the store.
  """

  def __init__(self) -> None:
    self._jobs: dict[str, JobRecord] = {}
    self._order: dict[str, int] = {}
    self._items: dict[str, QueueItemRecord] = {}
    self._items_by_job: dict[str, list[str]] = {}
    self._events: dict[str, list[JobEventRecord]] = {}

  async def create_job(self, job: JobRecord, items: list[QueueItemRecord]) -> None:
    if job.job_id in self._jobs:
      raise ValueError(f"Job {job.job_id} already exists.")
    self._jobs[job.job_id] = replace(job)
    self._order[job.job_id] = len(self._order)
    self._items_by_job[job.job_id] = []
    for item in items:
      self._items[item.item_id] = replace(item, input=copy.deepcopy(item.input))
      self._items_by_job[job.job_id].append(item.item_id)

  async def get_job(self, job_id: str) -> JobRecord | None:
    job = self._jobs.get(job_id)
    return replace(job) if job else None

  async def list_items(self, job_id: str) -> list[QueueItemRecord]:
    items = [self._items[item_id] for item_id in self._items_by_job.get(job_id, [])]
    return [replace(item, input=copy.deepcopy(item.input)) for item in sorted(items, key=lambda item: item.sequence)]

  async def list_jobs_for_owner(self, owner_id: str, limit: int) -> list[JobRecord]:
    owned = [job for job in self._jobs.values() if job.owner_id == owner_id]
    owned.sort(key=lambda job: (job.created_at, self._order[job.job_id]), reverse=True)
    return [replace(job) for job in owned[:limit]]

  async def find_jobs_by_status(self, status: JobStatus, limit: int = 10) -> list[JobRecord]:
    matching = [job for job in self._jobs.values() if job.status == status]
    matching.sort(key=lambda job: (job.created_at, self._order[job.job_id]))
    return [replace(job) for job in matching[:limit]]

  async def count_active_jobs(self, owner_id: str) -> int:
    return sum(1 for job in self._jobs.values() if job.owner_id == owner_id and job.status in ACTIVE_JOB_STATUSES)

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
    job = self._jobs.get(job_id)
    if job is None:
      return None
    changes = {"status": status, "cancel_requested": cancel_requested, "completed_at": completed_at, "error": error}
    updated = replace(job, **{key: value for key, value in changes.items() if value is not None})
    updated.updated_at = updated_at or utc_timestamp()
    self._jobs[job_id] = updated
    return replace(updated)

  async def mark_item_processing(self, item_id: str, *, started_at: str) -> QueueItemRecord | None:
    item = self._items.get(item_id)
    if item is None or item.job_id not in self._jobs:
      return None
    if item.status == "pending":
      item.status = "processing"
      item.started_at = started_at
      item.updated_at = started_at
    return replace(item)

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
    job = self._jobs.get(job_id)
    item = self._items.get(item_id)
    if job is None or item is None or item.job_id != job_id:
      return None
    if status not in TERMINAL_ITEM_STATUSES:
      raise ValueError(f"Outcome status must be completed or failed, got {status!r}.")
    # Resolved items are immutable.
    if item.is_terminal:
      return replace(job)

    item.status = status
    item.result_ref = result_ref if status == "completed" else None
    item.error = error if status == "failed" else None
    item.finished_at = finished_at
    item.updated_at = finished_at
    if status == "completed":
      job.completed_items += 1
    else:
      job.failed_items += 1
    job.status = rollup_status(job)
    if job.is_terminal and job.completed_at is None:
      job.completed_at = finished_at
    job.updated_at = finished_at
    return replace(job)

  async def fail_job(self, job_id: str, *, error: str, finished_at: str, item_error: str) -> JobRecord | None:
    job = self._jobs.get(job_id)
    if job is None:
      return None
    for item_id in self._items_by_job.get(job_id, []):
      item = self._items[item_id]
      if item.is_terminal:
        continue
      item.status = "failed"
      item.error = item_error
      item.finished_at = finished_at
      item.updated_at = finished_at
    job.failed_items = job.total_items - job.completed_items
    job.status = "failed"
    job.error = error
    job.completed_at = finished_at
    job.updated_at = finished_at
    return replace(job)

  async def append_event(self, job_id: str, *, event_type: str, message: str, payload: dict[str, Any] | None = None) -> None:
    if job_id not in self._jobs:
      return
    event = JobEventRecord(job_id=job_id, event_type=event_type, message=message, created_at=utc_timestamp(), payload=copy.deepcopy(payload))
    self._events.setdefault(job_id, []).append(event)

  async def list_events(self, job_id: str, limit: int = 100) -> list[JobEventRecord]:
    events = self._events.get(job_id, [])
    return list(events[-limit:]) if limit > 0 else []

  def delete_job(self, job_id: str) -> None:
    """Drop a job and everything it owns."""
    self._jobs.pop(job_id, None)
    for item_id in self._items_by_job.pop(job_id, []):
      self._items.pop(item_id, None)
    self._events.pop(job_id, None)
