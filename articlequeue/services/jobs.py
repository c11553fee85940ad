import logging
from typing import Any

from fastapi import BackgroundTasks, HTTPException, status

from articlequeue.api.models import ArticleSettings, JobCreateRequest, JobCreateResponse, JobEventResponse, JobEventsResponse, JobItemStatus, JobListResponse, JobStatusResponse, JobSummaryResponse
from articlequeue.config import Settings
from articlequeue.jobs.admission import ActiveJobLimitError, AdmissionError, merge_item_settings
from articlequeue.jobs.manager import QueueManager, RetryNotAllowedError
from articlequeue.jobs.models import JobDetail, JobRecord

logger = logging.getLogger(__name__)

_JOB_NOT_FOUND_MSG = "Job not found."
_JOB_FORBIDDEN_MSG = "Job belongs to another user."


def _build_item_payloads(request: JobCreateRequest) -> list[dict[str, Any]]:
  """Resolve each item's effective settings, item values over batch defaults."""
  shared = request.settings.model_dump(exclude_none=True) if request.settings else {}
  payloads: list[dict[str, Any]] = []
  for item in request.items:
    own = item.settings.model_dump(exclude_none=True) if item.settings else {}
    merged = merge_item_settings(shared, {"keyword": item.keyword, "settings": own})
    # Fill the remaining defaults once the layers are merged.
    merged["settings"] = ArticleSettings.model_validate(merged["settings"]).model_dump()
    payloads.append(merged)
  return payloads


def _job_status_from_detail(detail: JobDetail) -> JobStatusResponse:
  """Convert a persisted job and its items into an API response payload."""
  summary = JobSummaryResponse.from_record(detail.job)
  return JobStatusResponse(**summary.model_dump(), items=[JobItemStatus.from_record(item) for item in detail.items])


async def _load_owned_job(manager: QueueManager, job_id: str, user_id: str) -> JobDetail:
  detail = await manager.get_job(job_id)
  if detail is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  if detail.job.owner_id != user_id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_JOB_FORBIDDEN_MSG)
  return detail


def _schedule_admission(job: JobRecord, manager: QueueManager, settings: Settings, background_tasks: BackgroundTasks) -> None:
  # With auto-processing off the sweeper picks the job up instead.
  if settings.jobs_auto_process:
    background_tasks.add_task(manager.admit_and_run, job.job_id)


async def create_job(request: JobCreateRequest, manager: QueueManager, settings: Settings, background_tasks: BackgroundTasks, *, user_id: str) -> JobCreateResponse:
  """Create a batch job and schedule its admission."""
  payloads = _build_item_payloads(request)
  try:
    job = await manager.create_job(user_id, payloads, batch_name=request.batch_name)
  except AdmissionError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  except ActiveJobLimitError as exc:
    raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail={"error": "ACTIVE_JOB_LIMIT", "limit": exc.limit}) from exc

  _schedule_admission(job, manager, settings, background_tasks)
  return JobCreateResponse(job_id=job.job_id, status=job.status, total_items=job.total_items)


async def get_job_status(job_id: str, manager: QueueManager, *, user_id: str) -> JobStatusResponse:
  """Fetch the status and per-item outcomes of a job."""
  detail = await _load_owned_job(manager, job_id, user_id)
  return _job_status_from_detail(detail)


async def list_jobs(manager: QueueManager, *, user_id: str, limit: int) -> JobListResponse:
  """List the caller's jobs, newest first."""
  jobs = await manager.get_user_jobs(user_id, limit)
  return JobListResponse(jobs=[JobSummaryResponse.from_record(job) for job in jobs])


async def cancel_job(job_id: str, manager: QueueManager, *, user_id: str) -> JobStatusResponse:
  """Request cancellation of a job; finished jobs are returned unchanged."""
  await _load_owned_job(manager, job_id, user_id)
  updated = await manager.cancel_job(job_id)
  if updated is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  detail = await manager.get_job(job_id)
  if detail is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  return _job_status_from_detail(detail)


async def retry_job(job_id: str, manager: QueueManager, settings: Settings, background_tasks: BackgroundTasks, *, user_id: str) -> JobCreateResponse:
  """Create a new job from the failed items of a finished job."""
  await _load_owned_job(manager, job_id, user_id)
  try:
    job = await manager.retry_failed_items(job_id)
  except RetryNotAllowedError as exc:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
  except AdmissionError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  except ActiveJobLimitError as exc:
    raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail={"error": "ACTIVE_JOB_LIMIT", "limit": exc.limit}) from exc
  if job is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)

  logger.info("Job %s retried as %s with %d items.", job_id, job.job_id, job.total_items)
  _schedule_admission(job, manager, settings, background_tasks)
  return JobCreateResponse(job_id=job.job_id, status=job.status, total_items=job.total_items)


async def list_job_events(job_id: str, manager: QueueManager, *, user_id: str, limit: int) -> JobEventsResponse:
  """Return the timeline of a job."""
  await _load_owned_job(manager, job_id, user_id)
  events = await manager.list_events(job_id, limit)
  return JobEventsResponse(job_id=job_id, events=[JobEventResponse.from_record(event) for event in events])
