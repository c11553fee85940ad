import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from articlequeue.api.deps import get_current_user_id, get_queue_manager
from articlequeue.api.models import JobCreateRequest, JobCreateResponse, JobEventsResponse, JobListResponse, JobStatusResponse
from articlequeue.config import Settings, get_settings
from articlequeue.jobs.manager import QueueManager
from articlequeue.services import jobs as job_service

router = APIRouter()
logger = logging.getLogger("articlequeue.api.routes.jobs")


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_job(  # noqa: B008
  request: JobCreateRequest,
  background_tasks: BackgroundTasks,
  settings: Settings = Depends(get_settings),  # noqa: B008
  manager: QueueManager = Depends(get_queue_manager),  # noqa: B008
  user_id: str = Depends(get_current_user_id),  # noqa: B008
) -> JobCreateResponse:
  """Submit a batch of keywords for article generation."""
  return await job_service.create_job(request, manager, settings, background_tasks, user_id=user_id)


@router.get("", response_model=JobListResponse)
async def list_jobs(  # noqa: B008
  limit: int = Query(default=20, ge=1, le=100),
  manager: QueueManager = Depends(get_queue_manager),  # noqa: B008
  user_id: str = Depends(get_current_user_id),  # noqa: B008
) -> JobListResponse:
  """List the caller's jobs, newest first."""
  return await job_service.list_jobs(manager, user_id=user_id, limit=limit)


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(  # noqa: B008
  job_id: str,
  manager: QueueManager = Depends(get_queue_manager),  # noqa: B008
  user_id: str = Depends(get_current_user_id),  # noqa: B008
) -> JobStatusResponse:
  """Fetch the status and per-item outcomes of a job."""
  return await job_service.get_job_status(job_id, manager, user_id=user_id)


@router.post("/{job_id}/cancel", response_model=JobStatusResponse)
async def cancel_job(  # noqa: B008
  job_id: str,
  manager: QueueManager = Depends(get_queue_manager),  # noqa: B008
  user_id: str = Depends(get_current_user_id),  # noqa: B008
) -> JobStatusResponse:
  """Request cancellation of a job."""
  return await job_service.cancel_job(job_id, manager, user_id=user_id)


@router.post("/{job_id}/retry", response_model=JobCreateResponse, status_code=status.HTTP_201_CREATED)
async def retry_job(  # noqa: B008
  job_id: str,
  background_tasks: BackgroundTasks,
  settings: Settings = Depends(get_settings),  # noqa: B008
  manager: QueueManager = Depends(get_queue_manager),  # noqa: B008
  user_id: str = Depends(get_current_user_id),  # noqa: B008
) -> JobCreateResponse:
  """Retry the failed items of a finished job as a new job."""
  return await job_service.retry_job(job_id, manager, settings, background_tasks, user_id=user_id)


@router.get("/{job_id}/events", response_model=JobEventsResponse)
async def list_job_events(  # noqa: B008
  job_id: str,
  limit: int = Query(default=100, ge=1, le=500),
  manager: QueueManager = Depends(get_queue_manager),  # noqa: B008
  user_id: str = Depends(get_current_user_id),  # noqa: B008
) -> JobEventsResponse:
  """Return the timeline of a job."""
  return await job_service.list_job_events(job_id, manager, user_id=user_id, limit=limit)
