from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator

from articlequeue.jobs.models import JobEventRecord, JobRecord, QueueItemRecord

JobStatusValue = Literal["pending", "processing", "completed", "partial", "failed"]
ItemStatusValue = Literal["pending", "processing", "completed", "failed"]


class ArticleSettings(BaseModel):
  """Per-article generation settings."""

  word_count: int = Field(default=1500, ge=100, le=5000, description="Target article length in words.")
  tone: str = Field(default="professional", min_length=1, max_length=50)
  call_to_action: str | None = Field(default=None, max_length=500)
  project_id: str | None = Field(default=None, max_length=100)
  model_config = ConfigDict(extra="forbid")


class SharedArticleSettings(BaseModel):
  """Batch-wide defaults; every field is optional so items can override any of them."""

  word_count: int | None = Field(default=None, ge=100, le=5000)
  tone: str | None = Field(default=None, min_length=1, max_length=50)
  call_to_action: str | None = Field(default=None, max_length=500)
  project_id: str | None = Field(default=None, max_length=100)
  model_config = ConfigDict(extra="forbid")


class ArticleItemRequest(BaseModel):
  """One keyword to turn into an article."""

  keyword: StrictStr = Field(min_length=1, max_length=200)
  settings: SharedArticleSettings | None = None
  model_config = ConfigDict(extra="forbid")

  @field_validator("keyword")
  @classmethod
  def strip_keyword(cls, value: str) -> str:
    stripped = value.strip()
    if not stripped:
      raise ValueError("Keyword must not be blank.")
    return stripped


class JobCreateRequest(BaseModel):
  """Request payload for submitting a batch of articles."""

  items: list[ArticleItemRequest] = Field(description="Keywords to generate, processed in order.")
  settings: SharedArticleSettings | None = Field(default=None, description="Defaults applied beneath each item's own settings.")
  batch_name: str | None = Field(default=None, max_length=200)
  model_config = ConfigDict(extra="forbid")


class JobCreateResponse(BaseModel):
  """Response payload for job creation."""

  job_id: StrictStr
  status: JobStatusValue
  total_items: StrictInt = Field(ge=1)


class JobItemStatus(BaseModel):
  item_id: StrictStr
  sequence: StrictInt
  keyword: str | None = None
  status: ItemStatusValue
  error: str | None = None
  result_ref: str | None = None
  started_at: str | None = None
  finished_at: str | None = None

  @classmethod
  def from_record(cls, item: QueueItemRecord) -> JobItemStatus:
    keyword = item.input.get("keyword")
    return cls(
      item_id=item.item_id,
      sequence=item.sequence,
      keyword=keyword if isinstance(keyword, str) else None,
      status=item.status,
      error=item.error,
      result_ref=item.result_ref,
      started_at=item.started_at,
      finished_at=item.finished_at,
    )


class JobSummaryResponse(BaseModel):
  """Aggregate view of a job without its items."""

  job_id: StrictStr
  batch_name: str | None = None
  parent_job_id: str | None = None
  status: JobStatusValue
  total_items: StrictInt
  completed_items: StrictInt
  failed_items: StrictInt
  progress: StrictInt = Field(ge=0, le=100)
  cancel_requested: bool = False
  error: str | None = None
  created_at: str
  updated_at: str
  completed_at: str | None = None

  @classmethod
  def from_record(cls, job: JobRecord) -> JobSummaryResponse:
    return cls(
      job_id=job.job_id,
      batch_name=job.batch_name,
      parent_job_id=job.parent_job_id,
      status=job.status,
      total_items=job.total_items,
      completed_items=job.completed_items,
      failed_items=job.failed_items,
      progress=job.progress,
      cancel_requested=job.cancel_requested,
      error=job.error,
      created_at=job.created_at,
      updated_at=job.updated_at,
      completed_at=job.completed_at,
    )


class JobStatusResponse(JobSummaryResponse):
  """Job record plus per-item status."""

  items: list[JobItemStatus] = Field(default_factory=list)


class JobListResponse(BaseModel):
  jobs: list[JobSummaryResponse]


class JobEventResponse(BaseModel):
  event_type: str
  message: str
  created_at: str
  payload: dict | None = None

  @classmethod
  def from_record(cls, event: JobEventRecord) -> JobEventResponse:
    return cls(event_type=event.event_type, message=event.message, created_at=event.created_at, payload=event.payload)


class JobEventsResponse(BaseModel):
  job_id: StrictStr
  events: list[JobEventResponse]
