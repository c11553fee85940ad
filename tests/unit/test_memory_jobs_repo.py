from __future__ import annotations

import pytest

from articlequeue.jobs.models import JobRecord, QueueItemRecord
from articlequeue.storage.memory_jobs_repo import InMemoryJobsRepository

_TS = "2026-01-01T00:00:00.000000Z"


async def _seed(repo: InMemoryJobsRepository, job_id: str = "job-1", total: int = 3) -> list[QueueItemRecord]:
  job = JobRecord(job_id=job_id, owner_id="owner-1", total_items=total, status="processing", created_at=_TS, updated_at=_TS)
  items = [QueueItemRecord(item_id=f"{job_id}-i{index}", job_id=job_id, sequence=index, input={"keyword": f"k{index}"}, status="pending", created_at=_TS, updated_at=_TS) for index in range(total)]
  await repo.create_job(job, items)
  return items


@pytest.mark.anyio
async def test_outcome_updates_item_and_counters(jobs_repo: InMemoryJobsRepository) -> None:
  items = await _seed(jobs_repo)
  await jobs_repo.mark_item_processing(items[0].item_id, started_at=_TS)

  job = await jobs_repo.record_item_outcome("job-1", items[0].item_id, status="completed", finished_at=_TS, result_ref="ref-0", error="ignored")
  job = await jobs_repo.record_item_outcome("job-1", items[1].item_id, status="failed", finished_at=_TS, result_ref="ignored", error="boom")

  assert (job.completed_items, job.failed_items) == (1, 1)
  stored = await jobs_repo.list_items("job-1")
  assert (stored[0].status, stored[0].result_ref, stored[0].error) == ("completed", "ref-0", None)
  assert (stored[1].status, stored[1].result_ref, stored[1].error) == ("failed", None, "boom")


@pytest.mark.anyio
async def test_resolved_items_are_never_counted_twice(jobs_repo: InMemoryJobsRepository) -> None:
  items = await _seed(jobs_repo)
  await jobs_repo.record_item_outcome("job-1", items[0].item_id, status="completed", finished_at=_TS, result_ref="ref-0")

  job = await jobs_repo.record_item_outcome("job-1", items[0].item_id, status="failed", finished_at=_TS, error="late")

  assert (job.completed_items, job.failed_items) == (1, 0)
  assert (await jobs_repo.list_items("job-1"))[0].status == "completed"


@pytest.mark.anyio
async def test_outcome_rejects_non_terminal_status(jobs_repo: InMemoryJobsRepository) -> None:
  items = await _seed(jobs_repo)
  with pytest.raises(ValueError):
    await jobs_repo.record_item_outcome("job-1", items[0].item_id, status="processing", finished_at=_TS)


@pytest.mark.anyio
async def test_fail_job_fails_only_unresolved_items(jobs_repo: InMemoryJobsRepository) -> None:
  items = await _seed(jobs_repo)
  await jobs_repo.record_item_outcome("job-1", items[0].item_id, status="completed", finished_at=_TS, result_ref="ref-0")

  job = await jobs_repo.fail_job("job-1", error="lost", finished_at=_TS, item_error="aborted")

  assert (job.status, job.error, job.completed_items, job.failed_items, job.completed_at) == ("failed", "lost", 1, 2, _TS)
  stored = await jobs_repo.list_items("job-1")
  assert stored[0].result_ref == "ref-0"
  assert [item.error for item in stored[1:]] == ["aborted", "aborted"]


@pytest.mark.anyio
async def test_reads_return_copies(jobs_repo: InMemoryJobsRepository) -> None:
  await _seed(jobs_repo)
  job = await jobs_repo.get_job("job-1")
  job.completed_items = 99
  items = await jobs_repo.list_items("job-1")
  items[0].input["keyword"] = "mutated"

  assert (await jobs_repo.get_job("job-1")).completed_items == 0
  assert (await jobs_repo.list_items("job-1"))[0].input["keyword"] == "k0"


@pytest.mark.anyio
async def test_missing_records_return_none(jobs_repo: InMemoryJobsRepository) -> None:
  items = await _seed(jobs_repo)
  jobs_repo.delete_job("job-1")

  assert await jobs_repo.get_job("job-1") is None
  assert await jobs_repo.update_job("job-1", status="failed") is None
  assert await jobs_repo.mark_item_processing(items[0].item_id, started_at=_TS) is None
  assert await jobs_repo.record_item_outcome("job-1", items[0].item_id, status="completed", finished_at=_TS) is None
  assert await jobs_repo.fail_job("job-1", error="x", finished_at=_TS, item_error="y") is None
  await jobs_repo.append_event("job-1", event_type="noop", message="ignored")
  assert await jobs_repo.list_events("job-1") == []


@pytest.mark.anyio
async def test_events_keep_the_most_recent_in_order(jobs_repo: InMemoryJobsRepository) -> None:
  await _seed(jobs_repo)
  for index in range(5):
    await jobs_repo.append_event("job-1", event_type="tick", message=str(index))

  events = await jobs_repo.list_events("job-1", limit=3)
  assert [event.message for event in events] == ["2", "3", "4"]


@pytest.mark.anyio
async def test_count_active_and_find_by_status(jobs_repo: InMemoryJobsRepository) -> None:
  await _seed(jobs_repo, "job-1")
  await _seed(jobs_repo, "job-2")
  await jobs_repo.update_job("job-2", status="completed")

  assert await jobs_repo.count_active_jobs("owner-1") == 1
  assert [job.job_id for job in await jobs_repo.find_jobs_by_status("completed")] == ["job-2"]


@pytest.mark.anyio
async def test_last_outcome_settles_the_job(jobs_repo: InMemoryJobsRepository) -> None:
  items = await _seed(jobs_repo, total=2)

  job = await jobs_repo.record_item_outcome("job-1", items[0].item_id, status="completed", finished_at=_TS, result_ref="ref-0")
  assert (job.status, job.completed_at) == ("processing", None)
  assert await jobs_repo.count_active_jobs("owner-1") == 1

  job = await jobs_repo.record_item_outcome("job-1", items[1].item_id, status="failed", finished_at="2026-01-01T00:00:05.000000Z", error="boom")

  assert (job.status, job.completed_at) == ("partial", "2026-01-01T00:00:05.000000Z")
  assert await jobs_repo.count_active_jobs("owner-1") == 0
