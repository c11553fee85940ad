"""Execution loop for one batch job."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable
from typing import Any

from articlequeue.jobs.dispatch import ConcurrencyLimiter, GenerationRequest, GenerationTask, NullLimiter
from articlequeue.jobs.models import JobRecord, QueueItemRecord, utc_timestamp
from articlequeue.storage.jobs_repo import JobsRepository

CANCELED_ITEM_ERROR = "Canceled before dispatch."
GENERATION_CANCELED_ITEM_ERROR = "Generation was canceled."
INTERRUPTED_ITEM_ERROR = "Interrupted before completion."
JOB_LOST_ITEM_ERROR = "Job failed before this item completed."

logger = logging.getLogger(__name__)


class JobLostError(RuntimeError):
  """Raised when a runner can no longer record progress for its job."""


def _describe(exc: BaseException) -> str:
  return str(exc) or exc.__class__.__name__


class JobRunner:
  """Dispatches a job's pending items through a generation task.

  The runner is the only writer for its job while it runs. At most
  ``concurrency`` items are in flight; dispatch follows ``sequence`` order
  while completion order is whatever the generation task produces. Any error
  reading or writing job state stops dispatch, lets started items finish and
  then marks the job failed.
  """

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    task: GenerationTask,
    concurrency: int,
    item_timeout_seconds: float = 0,
    limiter: ConcurrencyLimiter | None = None,
  ) -> None:
    if concurrency < 1:
      raise ValueError("concurrency must be at least 1.")
    self._jobs_repo = jobs_repo
    self._task = task
    self._concurrency = concurrency
    self._item_timeout_seconds = item_timeout_seconds
    self._limiter = limiter or NullLimiter()

  async def run(self, job_id: str) -> JobRecord | None:
    """Process every pending item of a job and return the settled record."""
    try:
      job = await self._jobs_repo.get_job(job_id)
      if job is None:
        logger.warning("Job %s vanished before its runner started.", job_id)
        return None
      if job.is_terminal:
        return job
      items = await self._jobs_repo.list_items(job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Job %s could not be loaded.", job_id, exc_info=exc)
      return await self._fail(job_id, f"Failed to load job: {_describe(exc)}")

    pending = deque(item for item in items if item.status == "pending")
    lock = asyncio.Lock()
    in_flight: dict[asyncio.Task[None], QueueItemRecord] = {}
    canceled = False
    failure: str | None = None
    logger.info("Running job %s with %d pending items (concurrency=%d).", job_id, len(pending), self._concurrency)

    try:
      while pending or in_flight:
        while pending and len(in_flight) < self._concurrency and not canceled and failure is None:
          # Cancellation is cooperative and observed between dispatches.
          current = await self._jobs_repo.get_job(job_id)
          if current is None:
            failure = "Job record disappeared while processing."
            break
          if current.cancel_requested:
            canceled = True
            logger.info("Job %s canceled with %d items not dispatched.", job_id, len(pending))
            break
          item = pending.popleft()
          in_flight[asyncio.create_task(self._run_item(current, item, lock), name=f"articlequeue-item-{item.item_id}")] = item

        if not in_flight:
          break

        done, _ = await asyncio.wait(set(in_flight), return_when=asyncio.FIRST_COMPLETED)
        for finished in done:
          item = in_flight.pop(finished)
          if finished.cancelled():
            # The generation call raised CancelledError itself; the runner is still live.
            logger.warning("Job %s item %d was canceled during generation.", job_id, item.sequence)
            await self._record_outcome(job_id, item, lock, error=GENERATION_CANCELED_ITEM_ERROR)
            continue
          exc = finished.exception()
          if exc is not None and failure is None:
            failure = _describe(exc)
            logger.error("Job %s stopped dispatching: %s", job_id, failure, exc_info=exc)
    except asyncio.CancelledError:
      for task in in_flight:
        task.cancel()
      await asyncio.gather(*in_flight, return_exceptions=True)
      raise
    except Exception as exc:  # noqa: BLE001
      failure = failure or _describe(exc)
      logger.error("Job %s stopped dispatching: %s", job_id, failure, exc_info=exc)
      await asyncio.gather(*in_flight, return_exceptions=True)

    if failure is not None:
      return await self._fail(job_id, failure)

    try:
      if canceled and pending:
        return await self.settle_undispatched(job_id, pending, lock=lock)
      current = await self._jobs_repo.get_job(job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Job %s could not be settled.", job_id, exc_info=exc)
      return await self._fail(job_id, f"Failed to settle job: {_describe(exc)}")

    if current is None:
      logger.warning("Job %s vanished before it could be settled.", job_id)
      return None
    if not current.is_terminal:
      return await self._fail(job_id, "Job stopped with unresolved items.")
    return current

  async def settle_undispatched(self, job_id: str, items: Iterable[QueueItemRecord], *, lock: asyncio.Lock | None = None) -> JobRecord | None:
    """Fail items that will never be dispatched; the last one settles the job."""
    lock = lock or asyncio.Lock()
    job: JobRecord | None = None
    settled = 0
    for item in items:
      if item.status != "pending":
        continue
      job = await self._record_outcome(job_id, item, lock, error=CANCELED_ITEM_ERROR)
      settled += 1
    if settled:
      logger.info("Job %s settled %d undispatched items after cancellation.", job_id, settled)
    if job is None:
      return await self._jobs_repo.get_job(job_id)
    return job

  async def announce_finished(self, job: JobRecord) -> None:
    logger.info("Job %s finished as %s (%d completed, %d failed).", job.job_id, job.status, job.completed_items, job.failed_items)
    await self._emit(job.job_id, "job_finished", f"Job finished as {job.status}.", {"status": job.status, "completed_items": job.completed_items, "failed_items": job.failed_items})

  async def _run_item(self, job: JobRecord, item: QueueItemRecord, lock: asyncio.Lock) -> None:
    request = GenerationRequest(job_id=job.job_id, item_id=item.item_id, owner_id=job.owner_id, sequence=item.sequence, payload=item.input)
    result_ref: str | None = None
    error: str | None = None

    async with self._limiter:
      marked = await self._jobs_repo.mark_item_processing(item.item_id, started_at=utc_timestamp())
      if marked is None:
        raise JobLostError(f"Job {job.job_id} disappeared before item {item.sequence} started.")
      try:
        result_ref = await self._generate(request)
      except TimeoutError:
        error = f"Timed out after {self._item_timeout_seconds:g} seconds."
      except Exception as exc:  # noqa: BLE001
        error = _describe(exc)

    if error is not None:
      logger.warning("Job %s item %d failed: %s", job.job_id, item.sequence, error)
    await self._record_outcome(job.job_id, item, lock, result_ref=result_ref, error=error)

  async def _record_outcome(self, job_id: str, item: QueueItemRecord, lock: asyncio.Lock, *, result_ref: str | None = None, error: str | None = None) -> JobRecord:
    async with lock:
      try:
        updated = await self._jobs_repo.record_item_outcome(
          job_id,
          item.item_id,
          status="failed" if error is not None else "completed",
          finished_at=utc_timestamp(),
          result_ref=result_ref,
          error=error,
        )
      except Exception as exc:
        raise JobLostError(f"Failed to record outcome of item {item.sequence}: {_describe(exc)}") from exc
      if updated is None:
        raise JobLostError("Job record disappeared while processing.")

      payload: dict[str, Any] = {"item_id": item.item_id, "sequence": item.sequence, "progress": updated.progress}
      if error is None:
        await self._emit(job_id, "item_completed", f"Item {item.sequence} completed.", payload)
      else:
        await self._emit(job_id, "item_failed", f"Item {item.sequence} failed: {error}", payload)
      # The repository flips the job to its terminal status with the last outcome.
      if updated.is_terminal:
        await self.announce_finished(updated)
      return updated

  async def _generate(self, request: GenerationRequest) -> str:
    if self._item_timeout_seconds > 0:
      return await asyncio.wait_for(self._task.run(request), timeout=self._item_timeout_seconds)
    return await self._task.run(request)

  async def _fail(self, job_id: str, reason: str) -> JobRecord | None:
    failed = await self._jobs_repo.fail_job(job_id, error=reason, finished_at=utc_timestamp(), item_error=JOB_LOST_ITEM_ERROR)
    if failed is None:
      logger.error("Job %s could not be marked failed; the record is gone.", job_id)
      return None
    logger.error("Job %s failed: %s", job_id, reason)
    await self._emit(job_id, "job_failed", reason, {"completed_items": failed.completed_items, "failed_items": failed.failed_items})
    return failed

  async def _emit(self, job_id: str, event_type: str, message: str, payload: dict[str, Any] | None = None) -> None:
    # Timeline writes never decide the outcome of an item.
    try:
      await self._jobs_repo.append_event(job_id, event_type=event_type, message=message, payload=payload)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to append %s event for job %s", event_type, job_id, exc_info=True)
