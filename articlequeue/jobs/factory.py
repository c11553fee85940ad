from __future__ import annotations

from articlequeue.ai.factory import get_generation_task
from articlequeue.config import Settings
from articlequeue.jobs.dispatch import GenerationTask, build_global_limiter
from articlequeue.jobs.manager import QueueManager
from articlequeue.storage.factory import _get_jobs_repo
from articlequeue.storage.jobs_repo import JobsRepository


def build_queue_manager(settings: Settings, *, jobs_repo: JobsRepository | None = None, task: GenerationTask | None = None) -> QueueManager:
  """Wire the queue manager from settings."""
  return QueueManager(
    jobs_repo=jobs_repo or _get_jobs_repo(settings),
    task=task or get_generation_task(settings),
    concurrency=settings.job_concurrency,
    item_timeout_seconds=settings.item_timeout_seconds,
    max_batch_items=settings.max_batch_items,
    max_active_jobs_per_owner=settings.max_active_jobs_per_owner,
    sweep_interval_seconds=settings.sweep_interval_seconds,
    limiter=build_global_limiter(settings.global_max_in_flight),
  )
