"""Queue manager coordinating batch job creation, admission and runners."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from articlequeue.jobs.admission import ActiveJobLimitError, admit_items
from articlequeue.jobs.dispatch import ConcurrencyLimiter, GenerationTask
from articlequeue.jobs.models import JobDetail, JobEventRecord, JobRecord, QueueItemRecord, utc_timestamp
from articlequeue.jobs.worker import INTERRUPTED_ITEM_ERROR, JobRunner
from articlequeue.storage.jobs_repo import JobsRepository
from articlequeue.utils.ids import generate_item_id, generate_job_id

logger = logging.getLogger(__name__)

_MAX_SWEEP_BACKOFF_SECONDS = 60.0
_SWEEP_BATCH = 10
_RECOVERY_BATCH = 100


class RetryNotAllowedError(Exception):
  """Raised when a job has nothing to retry or is still running."""


class QueueManager:
  """Owns every job runner in the process."""

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    task: GenerationTask,
    concurrency: int = 3,
    item_timeout_seconds: float = 0,
    max_batch_items: int | None = None,
    max_active_jobs_per_owner: int = 0,
    sweep_interval_seconds: float = 0,
    limiter: ConcurrencyLimiter | None = None,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._runner = JobRunner(jobs_repo=jobs_repo, task=task, concurrency=concurrency, item_timeout_seconds=item_timeout_seconds, limiter=limiter)
    self._max_batch_items = max_batch_items
    self._max_active_jobs_per_owner = max_active_jobs_per_owner
    self._sweep_interval_seconds = sweep_interval_seconds
    self._runners: dict[str, asyncio.Task[JobRecord | None]] = {}
    self._admission_lock = asyncio.Lock()
    self._sweeper: asyncio.Task[None] | None = None

  @property
  def jobs_repo(self) -> JobsRepository:
    return self._jobs_repo

  async def create_job(self, owner_id: str, items: Sequence[Mapping[str, Any]], *, batch_name: str | None = None, parent_job_id: str | None = None) -> JobRecord:
    """Persist a pending job with one pending item per input, in input order."""
    admitted = admit_items(items, max_items=self._max_batch_items)

    # Count-then-insert: concurrent submissions for one owner can overshoot the limit by the number of racing requests.
    if self._max_active_jobs_per_owner > 0:
      active = await self._jobs_repo.count_active_jobs(owner_id)
      if active >= self._max_active_jobs_per_owner:
        raise ActiveJobLimitError(owner_id, self._max_active_jobs_per_owner)

    job_id = generate_job_id()
    timestamp = utc_timestamp()
    job = JobRecord(job_id=job_id, owner_id=owner_id, total_items=len(admitted), status="pending", created_at=timestamp, updated_at=timestamp, batch_name=batch_name, parent_job_id=parent_job_id)
    records = [QueueItemRecord(item_id=generate_item_id(), job_id=job_id, sequence=sequence, input=payload, status="pending", created_at=timestamp, updated_at=timestamp) for sequence, payload in enumerate(admitted)]
    await self._jobs_repo.create_job(job, records)
    logger.info("Created job %s for owner %s with %d items.", job_id, owner_id, job.total_items)
    await self._emit(job_id, "job_created", f"Job created with {job.total_items} items.", {"total_items": job.total_items, "parent_job_id": parent_job_id})
    return job

  async def admit_and_run(self, job_id: str) -> JobRecord | None:
    """Move a pending job to processing and start its runner.

    Jobs that are already running or finished are returned unchanged.
    """
    async with self._admission_lock:
      job = await self._jobs_repo.get_job(job_id)
      if job is None:
        return None
      if job.status != "pending" or self.is_running(job_id):
        return job
      if job.cancel_requested:
        return await self._settle_canceled(job_id)

      started = await self._jobs_repo.update_job(job_id, status="processing")
      if started is None:
        return None
      await self._emit(job_id, "job_started", "Job started.", {"total_items": started.total_items})
      self._start_runner(job_id)
      return started

  async def get_job(self, job_id: str) -> JobDetail | None:
    """Return the persisted job and its items in sequence order."""
    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      return None
    items = await self._jobs_repo.list_items(job_id)
    return JobDetail(job=job, items=items)

  async def get_user_jobs(self, owner_id: str, limit: int = 20) -> list[JobRecord]:
    """Return an owner's jobs, newest first, without items."""
    if limit <= 0:
      return []
    return await self._jobs_repo.list_jobs_for_owner(owner_id, limit)

  async def cancel_job(self, job_id: str) -> JobRecord | None:
    """Request cooperative cancellation; terminal jobs are left alone."""
    async with self._admission_lock:
      job = await self._jobs_repo.get_job(job_id)
      if job is None:
        return None
      if job.is_terminal or job.cancel_requested:
        return job

      updated = await self._jobs_repo.update_job(job_id, cancel_requested=True)
      if updated is None:
        return None
      logger.info("Cancellation requested for job %s.", job_id)
      await self._emit(job_id, "cancel_requested", "Cancellation requested.", {"status": updated.status})

      # A job nobody is running has to be settled here.
      if not self.is_running(job_id) and updated.status == "pending":
        settled = await self._settle_canceled(job_id)
        return settled or updated
      return updated

  async def retry_failed_items(self, job_id: str) -> JobRecord | None:
    """Create a new job holding the inputs of a finished job's failed items."""
    detail = await self.get_job(job_id)
    if detail is None:
      return None
    if not detail.job.is_terminal:
      raise RetryNotAllowedError("Only finished jobs can be retried.")
    failed = [item.input for item in detail.items if item.status == "failed"]
    if not failed:
      raise RetryNotAllowedError("Job has no failed items to retry.")
    return await self.create_job(detail.job.owner_id, failed, batch_name=detail.job.batch_name, parent_job_id=job_id)

  async def list_events(self, job_id: str, limit: int = 100) -> list[JobEventRecord]:
    return await self._jobs_repo.list_events(job_id, limit)

  def is_running(self, job_id: str) -> bool:
    task = self._runners.get(job_id)
    return task is not None and not task.done()

  async def join(self, job_id: str, timeout: float | None = None) -> JobRecord | None:
    """Wait for a job's runner, if any, and return the persisted record."""
    task = self._runners.get(job_id)
    if task is not None:
      await asyncio.wait({task}, timeout=timeout)
    return await self._jobs_repo.get_job(job_id)

  async def start(self) -> None:
    """Recover interrupted jobs and start the pending-job sweeper."""
    await self.recover_interrupted()
    if self._sweep_interval_seconds > 0 and self._sweeper is None:
      self._sweeper = asyncio.create_task(self._sweep_forever(), name="articlequeue-sweeper")

  async def stop(self, grace_seconds: float = 10.0) -> None:
    """Stop the sweeper and give running jobs a grace period."""
    if self._sweeper is not None:
      self._sweeper.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await self._sweeper
      self._sweeper = None

    tasks = [task for task in self._runners.values() if not task.done()]
    if not tasks:
      return
    _, still_running = await asyncio.wait(tasks, timeout=grace_seconds)
    for task in still_running:
      task.cancel()
    if still_running:
      logger.warning("Canceled %d job runners at shutdown; their items will be recovered on restart.", len(still_running))
      await asyncio.gather(*still_running, return_exceptions=True)

  async def recover_interrupted(self) -> int:
    """Resume processing jobs left behind by a previous process.

    Items caught mid-flight are failed rather than re-dispatched because the
    generation call may already have had side effects.
    """
    resumed = 0
    seen: set[str] = set()
    while True:
      # Widen the window by what was already seen; resumed jobs stay "processing" while they run.
      limit = len(seen) + _RECOVERY_BATCH
      batch = await self._jobs_repo.find_jobs_by_status("processing", limit=limit)
      unseen = [job for job in batch if job.job_id not in seen]
      seen.update(job.job_id for job in unseen)
      for job in unseen:
        if not self.is_running(job.job_id) and await self._recover_job(job):
          resumed += 1
      if not unseen or len(batch) < limit:
        return resumed

  async def _recover_job(self, job: JobRecord) -> bool:
    current: JobRecord | None = job
    for item in await self._jobs_repo.list_items(job.job_id):
      if item.status != "processing":
        continue
      current = await self._jobs_repo.record_item_outcome(job.job_id, item.item_id, status="failed", finished_at=utc_timestamp(), error=INTERRUPTED_ITEM_ERROR)
      if current is None:
        return False
      await self._emit(job.job_id, "item_interrupted", f"Item {item.sequence} was interrupted.", {"item_id": item.item_id, "sequence": item.sequence})

    # The interrupted items may have been the last unresolved ones.
    if current.is_terminal:
      await self._runner.announce_finished(current)
      return False
    logger.info("Resuming interrupted job %s.", job.job_id)
    self._start_runner(job.job_id)
    return True

  async def sweep_once(self) -> int:
    """Admit the oldest pending jobs; returns how many were started."""
    admitted = 0
    for job in await self._jobs_repo.find_jobs_by_status("pending", limit=_SWEEP_BATCH):
      started = await self.admit_and_run(job.job_id)
      if started is not None and started.status == "processing":
        admitted += 1
    return admitted

  async def _sweep_forever(self) -> None:
    failures = 0
    while True:
      try:
        admitted = await self.sweep_once()
        if admitted:
          logger.info("Sweeper admitted %d pending jobs.", admitted)
        failures = 0
        delay = self._sweep_interval_seconds
      except Exception:  # noqa: BLE001
        failures += 1
        delay = min(self._sweep_interval_seconds * 2 ** (failures - 1), _MAX_SWEEP_BACKOFF_SECONDS)
        logger.exception("Pending job sweep failed (attempt %d); retrying in %.1fs", failures, delay)
      await asyncio.sleep(delay)

  def _start_runner(self, job_id: str) -> None:
    task = asyncio.create_task(self._runner.run(job_id), name=f"articlequeue-job-{job_id}")
    self._runners[job_id] = task
    task.add_done_callback(lambda done: self._on_runner_done(job_id, done))

  def _on_runner_done(self, job_id: str, task: asyncio.Task[JobRecord | None]) -> None:
    if self._runners.get(job_id) is task:
      del self._runners[job_id]
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Runner for job %s crashed.", job_id, exc_info=exc)

  async def _settle_canceled(self, job_id: str) -> JobRecord | None:
    items = await self._jobs_repo.list_items(job_id)
    return await self._runner.settle_undispatched(job_id, items)

  async def _emit(self, job_id: str, event_type: str, message: str, payload: dict[str, Any] | None = None) -> None:
    try:
      await self._jobs_repo.append_event(job_id, event_type=event_type, message=message, payload=payload)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to append %s event for job %s", event_type, job_id, exc_info=True)
