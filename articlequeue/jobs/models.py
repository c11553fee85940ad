"""Domain models for batch article generation jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

JobStatus = Literal["pending", "processing", "completed", "partial", "failed"]
ItemStatus = Literal["pending", "processing", "completed", "failed"]

TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"completed", "partial", "failed"})
ACTIVE_JOB_STATUSES: frozenset[str] = frozenset({"pending", "processing"})
TERMINAL_ITEM_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_timestamp() -> str:
  """Return the current UTC time as a sortable ISO-8601 string."""
  return datetime.now(UTC).strftime(_TIMESTAMP_FORMAT)


def compute_progress(total_items: int, completed_items: int, failed_items: int) -> int:
  """Return resolved items as a whole percentage, rounding halves up."""
  if total_items <= 0:
    return 0
  resolved = min(max(completed_items + failed_items, 0), total_items)
  # Integer arithmetic keeps 50.5 -> 51 instead of banker's rounding.
  return (200 * resolved + total_items) // (2 * total_items)


@dataclass
class JobRecord:
  """Aggregate record for one batch submission."""

  job_id: str
  owner_id: str
  total_items: int
  status: JobStatus
  created_at: str
  updated_at: str
  completed_items: int = 0
  failed_items: int = 0
  batch_name: str | None = None
  completed_at: str | None = None
  error: str | None = None
  cancel_requested: bool = False
  parent_job_id: str | None = None

  @property
  def progress(self) -> int:
    """Derived from the counters on every read."""
    return compute_progress(self.total_items, self.completed_items, self.failed_items)

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_JOB_STATUSES


@dataclass
class QueueItemRecord:
  """One keyword awaiting (or done with) article generation."""

  item_id: str
  job_id: str
  sequence: int
  input: dict[str, Any]
  status: ItemStatus
  created_at: str
  updated_at: str
  error: str | None = None
  result_ref: str | None = None
  started_at: str | None = None
  finished_at: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_ITEM_STATUSES


@dataclass
class JobDetail:
  """A job record together with its items in sequence order."""

  job: JobRecord
  items: list[QueueItemRecord] = field(default_factory=list)


@dataclass(frozen=True)
class JobEventRecord:
  """One entry of a job's timeline."""

  job_id: str
  event_type: str
  message: str
  created_at: str
  payload: dict[str, Any] | None = None
