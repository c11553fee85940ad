"""Status rollup for batch jobs."""

from __future__ import annotations

from articlequeue.jobs.models import JobRecord, JobStatus


def resolve_terminal_status(total_items: int, completed_items: int, failed_items: int) -> JobStatus | None:
  """Return the terminal status once every item has resolved, otherwise None.

  All completed is ``completed``; none completed is ``failed``; any mix is
  ``partial``.
  """

  if completed_items < 0 or failed_items < 0 or completed_items + failed_items > total_items:
    raise ValueError(f"Inconsistent counters: total={total_items} completed={completed_items} failed={failed_items}")

  if completed_items + failed_items < total_items:
    return None

  if failed_items == 0:
    return "completed"

  if completed_items == 0:
    return "failed"

  return "partial"


def rollup_status(job: JobRecord) -> JobStatus:
  """Return the status a job should carry given its counters.

  Repositories apply this in the same write that records an item outcome, so
  a job is terminal exactly when its last item resolves.
  """

  # Job-level failures are final regardless of the counters.
  if job.status == "failed" and job.error:
    return "failed"

  terminal = resolve_terminal_status(job.total_items, job.completed_items, job.failed_items)
  if terminal is not None:
    return terminal

  return "pending" if job.status == "pending" else "processing"
