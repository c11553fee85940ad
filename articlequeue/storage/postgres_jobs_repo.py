"""Postgres-backed repository for batch jobs using SQLAlchemy."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from articlequeue.core.database import get_session_factory
from articlequeue.jobs.models import ACTIVE_JOB_STATUSES, TERMINAL_ITEM_STATUSES, TERMINAL_JOB_STATUSES, ItemStatus, JobEventRecord, JobRecord, JobStatus, QueueItemRecord, utc_timestamp
from articlequeue.jobs.progress import rollup_status
from articlequeue.schema.jobs import ArticleQueue, ArticleQueueEvent, ArticleQueueItem
from articlequeue.storage.jobs_repo import JobsRepository


class PostgresJobsRepository(JobsRepository):
  """Persist jobs, queue items and events to Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, job: JobRecord, items: list[QueueItemRecord]) -> None:
    async with self._session_factory() as session, session.begin():
      session.add(self._record_to_model(job))
      # Flush the parent row first so item foreign keys resolve.
      await session.flush()
      session.add_all([self._item_to_model(item) for item in items])

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(ArticleQueue, job_id)
      return self._model_to_record(row) if row is not None else None

  async def list_items(self, job_id: str) -> list[QueueItemRecord]:
    async with self._session_factory() as session:
      stmt = select(ArticleQueueItem).where(ArticleQueueItem.job_id == job_id).order_by(ArticleQueueItem.sequence)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_item(row) for row in rows]

  async def list_jobs_for_owner(self, owner_id: str, limit: int) -> list[JobRecord]:
    async with self._session_factory() as session:
      stmt = select(ArticleQueue).where(ArticleQueue.owner_id == owner_id).order_by(ArticleQueue.created_at.desc(), ArticleQueue.job_id.desc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def find_jobs_by_status(self, status: JobStatus, limit: int = 10) -> list[JobRecord]:
    async with self._session_factory() as session:
      stmt = select(ArticleQueue).where(ArticleQueue.status == status).order_by(ArticleQueue.created_at.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def count_active_jobs(self, owner_id: str) -> int:
    async with self._session_factory() as session:
      stmt = select(func.count(ArticleQueue.job_id)).where(ArticleQueue.owner_id == owner_id, ArticleQueue.status.in_(sorted(ACTIVE_JOB_STATUSES)))
      return int((await session.execute(stmt)).scalar_one())

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
    async with self._session_factory() as session, session.begin():
      row = await session.get(ArticleQueue, job_id, with_for_update=True)
      if row is None:
        return None
      if status is not None:
        row.status = status
      if cancel_requested is not None:
        row.cancel_requested = cancel_requested
      if completed_at is not None:
        row.completed_at = completed_at
      if error is not None:
        row.error = error
      row.updated_at = updated_at or utc_timestamp()
      await session.flush()
      return self._model_to_record(row)

  async def mark_item_processing(self, item_id: str, *, started_at: str) -> QueueItemRecord | None:
    async with self._session_factory() as session, session.begin():
      row = await session.get(ArticleQueueItem, item_id, with_for_update=True)
      if row is None:
        return None
      if row.status == "pending":
        row.status = "processing"
        row.started_at = started_at
        row.updated_at = started_at
        await session.flush()
      return self._model_to_item(row)

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
    if status not in TERMINAL_ITEM_STATUSES:
      raise ValueError(f"Outcome status must be completed or failed, got {status!r}.")

    async with self._session_factory() as session, session.begin():
      job = await session.get(ArticleQueue, job_id, with_for_update=True)
      item = await session.get(ArticleQueueItem, item_id, with_for_update=True)
      if job is None or item is None or item.job_id != job_id:
        return None
      # Resolved items are immutable; never count them twice.
      if item.status in TERMINAL_ITEM_STATUSES:
        return self._model_to_record(job)

      item.status = status
      item.result_ref = result_ref if status == "completed" else None
      item.error = error if status == "failed" else None
      item.finished_at = finished_at
      item.updated_at = finished_at
      if status == "completed":
        job.completed_items = job.completed_items + 1
      else:
        job.failed_items = job.failed_items + 1
      # The job turns terminal in the same transaction as its last item.
      job.status = rollup_status(self._model_to_record(job))
      if job.status in TERMINAL_JOB_STATUSES and job.completed_at is None:
        job.completed_at = finished_at
      job.updated_at = finished_at
      await session.flush()
      return self._model_to_record(job)

  async def fail_job(self, job_id: str, *, error: str, finished_at: str, item_error: str) -> JobRecord | None:
    async with self._session_factory() as session, session.begin():
      job = await session.get(ArticleQueue, job_id, with_for_update=True)
      if job is None:
        return None
      stmt = select(ArticleQueueItem).where(ArticleQueueItem.job_id == job_id, ArticleQueueItem.status.in_(["pending", "processing"]))
      for item in (await session.execute(stmt)).scalars().all():
        item.status = "failed"
        item.error = item_error
        item.finished_at = finished_at
        item.updated_at = finished_at
      job.failed_items = job.total_items - job.completed_items
      job.status = "failed"
      job.error = error
      job.completed_at = finished_at
      job.updated_at = finished_at
      await session.flush()
      return self._model_to_record(job)

  async def append_event(self, job_id: str, *, event_type: str, message: str, payload: dict[str, Any] | None = None) -> None:
    async with self._session_factory() as session, session.begin():
      if await session.get(ArticleQueue, job_id) is None:
        return
      session.add(ArticleQueueEvent(job_id=job_id, event_type=event_type, message=message, payload_json=payload, created_at=utc_timestamp()))

  async def list_events(self, job_id: str, limit: int = 100) -> list[JobEventRecord]:
    if limit <= 0:
      return []
    async with self._session_factory() as session:
      stmt = select(ArticleQueueEvent).where(ArticleQueueEvent.job_id == job_id).order_by(ArticleQueueEvent.id.desc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      # Newest rows were fetched first; hand them back chronologically.
      return [JobEventRecord(job_id=row.job_id, event_type=row.event_type, message=row.message, created_at=row.created_at, payload=row.payload_json) for row in reversed(rows)]

  @staticmethod
  def _record_to_model(job: JobRecord) -> ArticleQueue:
    return ArticleQueue(
      job_id=job.job_id,
      owner_id=job.owner_id,
      batch_name=job.batch_name,
      parent_job_id=job.parent_job_id,
      status=job.status,
      total_items=job.total_items,
      completed_items=job.completed_items,
      failed_items=job.failed_items,
      cancel_requested=job.cancel_requested,
      error=job.error,
      created_at=job.created_at,
      updated_at=job.updated_at,
      completed_at=job.completed_at,
    )

  @staticmethod
  def _item_to_model(item: QueueItemRecord) -> ArticleQueueItem:
    return ArticleQueueItem(
      item_id=item.item_id,
      job_id=item.job_id,
      sequence=item.sequence,
      input_json=item.input,
      status=item.status,
      error=item.error,
      result_ref=item.result_ref,
      created_at=item.created_at,
      updated_at=item.updated_at,
      started_at=item.started_at,
      finished_at=item.finished_at,
    )

  @staticmethod
  def _model_to_record(row: ArticleQueue) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      owner_id=row.owner_id,
      batch_name=row.batch_name,
      parent_job_id=row.parent_job_id,
      status=row.status,  # type: ignore[arg-type]
      total_items=row.total_items,
      completed_items=row.completed_items,
      failed_items=row.failed_items,
      cancel_requested=bool(row.cancel_requested),
      error=row.error,
      created_at=row.created_at,
      updated_at=row.updated_at,
      completed_at=row.completed_at,
    )

  @staticmethod
  def _model_to_item(row: ArticleQueueItem) -> QueueItemRecord:
    return QueueItemRecord(
      item_id=row.item_id,
      job_id=row.job_id,
      sequence=row.sequence,
      input=dict(row.input_json or {}),
      status=row.status,  # type: ignore[arg-type]
      error=row.error,
      result_ref=row.result_ref,
      created_at=row.created_at,
      updated_at=row.updated_at,
      started_at=row.started_at,
      finished_at=row.finished_at,
    )
