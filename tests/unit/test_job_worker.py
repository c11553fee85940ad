from __future__ import annotations

import asyncio

import pytest

from articlequeue.jobs.manager import QueueManager
from articlequeue.jobs.models import utc_timestamp
from articlequeue.jobs.worker import CANCELED_ITEM_ERROR, GENERATION_CANCELED_ITEM_ERROR, INTERRUPTED_ITEM_ERROR, JOB_LOST_ITEM_ERROR, JobRunner
from articlequeue.storage.memory_jobs_repo import InMemoryJobsRepository
from tests.helpers import GatedTask, RecordingTask, make_items


def _manager(repo: InMemoryJobsRepository, task, **kwargs) -> QueueManager:
  kwargs.setdefault("concurrency", 3)
  return QueueManager(jobs_repo=repo, task=task, **kwargs)


@pytest.mark.anyio
async def test_all_items_succeed_completes_job(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask()
  manager = _manager(jobs_repo, task)
  job = await manager.create_job("owner-1", make_items("a", "b", "c", "d", "e"))

  await manager.admit_and_run(job.job_id)
  final = await manager.join(job.job_id, timeout=5)

  assert final is not None
  assert final.status == "completed"
  assert (final.completed_items, final.failed_items) == (5, 0)
  assert final.progress == 100
  assert final.completed_at is not None
  assert final.error is None
  detail = await manager.get_job(job.job_id)
  assert [item.result_ref for item in detail.items] == [f"ref-{index}" for index in range(5)]
  assert all(item.status == "completed" and item.error is None for item in detail.items)


@pytest.mark.anyio
async def test_in_flight_items_never_exceed_concurrency(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask(default_delay=0.02)
  manager = _manager(jobs_repo, task, concurrency=3)
  job = await manager.create_job("owner-1", make_items(*[f"k{index}" for index in range(7)]))

  await manager.admit_and_run(job.job_id)
  await manager.join(job.job_id, timeout=5)

  assert task.max_active == 3
  # Dispatch follows input order.
  assert task.calls == list(range(7))


@pytest.mark.anyio
async def test_persisted_state_stays_consistent_while_running(jobs_repo: InMemoryJobsRepository) -> None:
  manager = _manager(jobs_repo, RecordingTask(fail={"k2", "k5"}, default_delay=0.01), concurrency=2)
  job = await manager.create_job("owner-1", make_items(*[f"k{index}" for index in range(7)]))
  observed_processing: list[int] = []

  async def observe() -> None:
    while True:
      current = await jobs_repo.get_job(job.job_id)
      items = await jobs_repo.list_items(job.job_id)
      processing = sum(item.status == "processing" for item in items)
      resolved = current.completed_items + current.failed_items
      assert processing <= 2
      assert 0 <= resolved <= current.total_items
      assert resolved == sum(item.is_terminal for item in items)
      assert current.is_terminal == (resolved == current.total_items)
      observed_processing.append(processing)
      if current.is_terminal:
        return
      await asyncio.sleep(0)

  await manager.admit_and_run(job.job_id)
  await asyncio.wait_for(observe(), timeout=5)

  assert max(observed_processing) == 2
  final = await manager.join(job.job_id, timeout=5)
  assert final.status == "partial"


@pytest.mark.anyio
async def test_mixed_outcomes_roll_up_to_partial(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask(fail={"fail-1", "fail-3"})
  manager = _manager(jobs_repo, task)
  job = await manager.create_job("owner-1", make_items("ok-0", "fail-1", "ok-2", "fail-3", "ok-4"))

  await manager.admit_and_run(job.job_id)
  final = await manager.join(job.job_id, timeout=5)

  assert final.status == "partial"
  assert (final.completed_items, final.failed_items) == (3, 2)
  assert final.error is None
  detail = await manager.get_job(job.job_id)
  failed = [item for item in detail.items if item.status == "failed"]
  assert [item.sequence for item in failed] == [1, 3]
  assert failed[0].error == "boom: fail-1"
  assert all(item.result_ref is None for item in failed)


@pytest.mark.anyio
async def test_every_item_failing_fails_the_job(jobs_repo: InMemoryJobsRepository) -> None:
  keywords = [f"fail-{index}" for index in range(5)]
  manager = _manager(jobs_repo, RecordingTask(fail=set(keywords)))
  job = await manager.create_job("owner-1", make_items(*keywords))

  await manager.admit_and_run(job.job_id)
  final = await manager.join(job.job_id, timeout=5)

  assert final.status == "failed"
  assert (final.completed_items, final.failed_items) == (0, 5)
  # Item failures alone do not produce a job-level error.
  assert final.error is None


@pytest.mark.anyio
async def test_results_are_attributed_by_item_when_completion_order_differs(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask(delays={0: 0.08, 1: 0.0, 2: 0.03})
  manager = _manager(jobs_repo, task)
  job = await manager.create_job("owner-1", make_items("slow", "fast", "medium"))

  await manager.admit_and_run(job.job_id)
  await manager.join(job.job_id, timeout=5)

  detail = await manager.get_job(job.job_id)
  assert {item.sequence: item.result_ref for item in detail.items} == {0: "ref-0", 1: "ref-1", 2: "ref-2"}
  finished = sorted(detail.items, key=lambda item: item.finished_at)
  assert [item.sequence for item in finished] == [1, 2, 0]


@pytest.mark.anyio
async def test_item_timeout_marks_only_that_item_failed(jobs_repo: InMemoryJobsRepository) -> None:
  manager = _manager(jobs_repo, RecordingTask(hang={"stuck"}, default_delay=0), item_timeout_seconds=0.05)
  job = await manager.create_job("owner-1", make_items("ok", "stuck", "ok-too"))

  await manager.admit_and_run(job.job_id)
  final = await manager.join(job.job_id, timeout=5)

  assert final.status == "partial"
  detail = await manager.get_job(job.job_id)
  stuck = detail.items[1]
  assert stuck.status == "failed"
  assert stuck.error == "Timed out after 0.05 seconds."


@pytest.mark.anyio
async def test_cancel_stops_dispatch_and_settles_remaining_items(jobs_repo: InMemoryJobsRepository) -> None:
  task = GatedTask()
  manager = _manager(jobs_repo, task, concurrency=1)
  job = await manager.create_job("owner-1", make_items("a", "b", "c", "d", "e"))

  await manager.admit_and_run(job.job_id)
  await asyncio.wait_for(task.started.wait(), timeout=1)
  requested = await manager.cancel_job(job.job_id)
  assert requested.cancel_requested is True
  assert requested.status == "processing"
  task.gate.set()
  final = await manager.join(job.job_id, timeout=5)

  # The in-flight item finishes; nothing else is dispatched.
  assert task.calls == [0]
  assert final.status == "partial"
  assert (final.completed_items, final.failed_items) == (1, 4)
  detail = await manager.get_job(job.job_id)
  assert [item.error for item in detail.items[1:]] == [CANCELED_ITEM_ERROR] * 4


@pytest.mark.anyio
async def test_cancel_before_admission_settles_immediately(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask()
  manager = _manager(jobs_repo, task)
  job = await manager.create_job("owner-1", make_items("a", "b"))

  final = await manager.cancel_job(job.job_id)

  assert final.status == "failed"
  assert final.failed_items == 2
  assert final.completed_at is not None
  assert task.calls == []
  # A later admission attempt leaves the terminal job alone.
  again = await manager.admit_and_run(job.job_id)
  assert again.status == "failed"
  assert task.calls == []


@pytest.mark.anyio
async def test_cancel_on_terminal_job_is_a_no_op(jobs_repo: InMemoryJobsRepository) -> None:
  manager = _manager(jobs_repo, RecordingTask())
  job = await manager.create_job("owner-1", make_items("a"))
  await manager.admit_and_run(job.job_id)
  finished = await manager.join(job.job_id, timeout=5)

  after = await manager.cancel_job(job.job_id)

  assert after.status == "completed"
  assert after.cancel_requested is False
  assert after.updated_at == finished.updated_at


@pytest.mark.anyio
async def test_admit_twice_starts_a_single_runner(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask()
  manager = _manager(jobs_repo, task)
  job = await manager.create_job("owner-1", make_items("a", "b", "c"))

  first = await manager.admit_and_run(job.job_id)
  second = await manager.admit_and_run(job.job_id)
  await manager.join(job.job_id, timeout=5)
  third = await manager.admit_and_run(job.job_id)

  assert first.status == "processing"
  assert second.status == "processing"
  assert third.status == "completed"
  assert sorted(task.calls) == [0, 1, 2]


@pytest.mark.anyio
async def test_job_record_disappearing_stops_the_runner(jobs_repo: InMemoryJobsRepository) -> None:
  class DeletingTask(RecordingTask):
    async def run(self, request):
      ref = await super().run(request)
      jobs_repo.delete_job(request.job_id)
      return ref

  task = DeletingTask()
  runner = JobRunner(jobs_repo=jobs_repo, task=task, concurrency=1)
  manager = _manager(jobs_repo, task)
  job = await manager.create_job("owner-1", make_items("a", "b", "c"))
  await jobs_repo.update_job(job.job_id, status="processing")

  result = await runner.run(job.job_id)

  assert result is None
  assert task.calls == [0]
  assert await jobs_repo.get_job(job.job_id) is None


@pytest.mark.anyio
async def test_repository_error_fails_job_but_keeps_completed_items() -> None:
  class FlakyRepo(InMemoryJobsRepository):
    def __init__(self) -> None:
      super().__init__()
      self.fail_sequence = 2

    async def record_item_outcome(self, job_id, item_id, **kwargs):
      if self._items[item_id].sequence == self.fail_sequence:
        raise RuntimeError("connection reset")
      return await super().record_item_outcome(job_id, item_id, **kwargs)

  repo = FlakyRepo()
  manager = _manager(repo, RecordingTask(), concurrency=1)
  job = await manager.create_job("owner-1", make_items("a", "b", "c", "d", "e"))

  await manager.admit_and_run(job.job_id)
  final = await manager.join(job.job_id, timeout=5)

  assert final.status == "failed"
  assert "connection reset" in final.error
  assert final.completed_items == 2
  assert final.failed_items == 3
  assert final.completed_at is not None
  detail = await manager.get_job(job.job_id)
  assert [item.result_ref for item in detail.items[:2]] == ["ref-0", "ref-1"]
  assert all(item.status == "failed" and item.error == JOB_LOST_ITEM_ERROR for item in detail.items[2:])


@pytest.mark.anyio
async def test_read_error_between_dispatches_fails_the_job() -> None:
  class FlakyReadRepo(InMemoryJobsRepository):
    def __init__(self) -> None:
      super().__init__()
      self.reads = 0
      self.fail_on_read: int | None = None

    async def get_job(self, job_id):
      self.reads += 1
      if self.reads == self.fail_on_read:
        raise RuntimeError("connection reset")
      return await super().get_job(job_id)

  repo = FlakyReadRepo()
  task = RecordingTask()
  manager = _manager(repo, task, concurrency=1)
  job = await manager.create_job("owner-1", make_items("a", "b", "c", "d", "e"))
  await manager.admit_and_run(job.job_id)
  # The runner reads once on start and once before each dispatch; break the read before item 1.
  repo.fail_on_read = repo.reads + 3

  final = await manager.join(job.job_id, timeout=5)

  assert not manager.is_running(job.job_id)
  assert final.is_terminal
  assert final.status == "failed"
  assert "connection reset" in final.error
  assert (final.completed_items, final.failed_items) == (1, 4)
  assert final.completed_at is not None
  assert task.calls == [0]
  detail = await manager.get_job(job.job_id)
  assert detail.items[0].result_ref == "ref-0"
  assert all(item.error == JOB_LOST_ITEM_ERROR for item in detail.items[1:])


@pytest.mark.anyio
async def test_generation_raising_cancelled_error_fails_only_that_item(jobs_repo: InMemoryJobsRepository) -> None:
  class SelfCancelingTask(RecordingTask):
    async def run(self, request):
      if request.payload.get("keyword") == "cancel-me":
        raise asyncio.CancelledError()
      return await super().run(request)

  manager = _manager(jobs_repo, SelfCancelingTask(), concurrency=2)
  job = await manager.create_job("owner-1", make_items("a", "cancel-me", "c"))

  await manager.admit_and_run(job.job_id)
  final = await manager.join(job.job_id, timeout=5)

  assert final.status == "partial"
  assert (final.completed_items, final.failed_items) == (2, 1)
  detail = await manager.get_job(job.job_id)
  assert (detail.items[1].status, detail.items[1].error) == ("failed", GENERATION_CANCELED_ITEM_ERROR)


@pytest.mark.anyio
async def test_recovery_fails_interrupted_items_and_resumes(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask()
  manager = _manager(jobs_repo, task)
  job = await manager.create_job("owner-1", make_items("a", "b", "c"))
  await jobs_repo.update_job(job.job_id, status="processing")
  items = await jobs_repo.list_items(job.job_id)
  await jobs_repo.mark_item_processing(items[0].item_id, started_at=utc_timestamp())

  resumed = await manager.recover_interrupted()
  final = await manager.join(job.job_id, timeout=5)

  assert resumed == 1
  assert task.calls == [1, 2]
  assert final.status == "partial"
  detail = await manager.get_job(job.job_id)
  assert detail.items[0].error == INTERRUPTED_ITEM_ERROR


@pytest.mark.anyio
async def test_recovery_pages_through_every_interrupted_job(jobs_repo: InMemoryJobsRepository, monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setattr("articlequeue.jobs.manager._RECOVERY_BATCH", 2)
  manager = _manager(jobs_repo, RecordingTask(default_delay=0))
  job_ids = []
  for index in range(5):
    job = await manager.create_job("owner-1", make_items(f"k{index}"))
    await jobs_repo.update_job(job.job_id, status="processing")
    job_ids.append(job.job_id)

  resumed = await manager.recover_interrupted()

  assert resumed == 5
  for job_id in job_ids:
    assert (await manager.join(job_id, timeout=5)).status == "completed"


@pytest.mark.anyio
async def test_recovery_settles_job_whose_last_items_were_interrupted(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask()
  manager = _manager(jobs_repo, task)
  job = await manager.create_job("owner-1", make_items("a"))
  await jobs_repo.update_job(job.job_id, status="processing")
  items = await jobs_repo.list_items(job.job_id)
  await jobs_repo.mark_item_processing(items[0].item_id, started_at=utc_timestamp())

  resumed = await manager.recover_interrupted()

  assert resumed == 0
  assert task.calls == []
  final = await jobs_repo.get_job(job.job_id)
  assert (final.status, final.failed_items) == ("failed", 1)
  assert final.completed_at is not None
  events = await manager.list_events(job.job_id)
  assert [event.event_type for event in events][-2:] == ["item_interrupted", "job_finished"]


@pytest.mark.anyio
async def test_global_limiter_bounds_calls_across_jobs(jobs_repo: InMemoryJobsRepository) -> None:
  task = RecordingTask(default_delay=0.02)
  manager = _manager(jobs_repo, task, concurrency=3, limiter=asyncio.Semaphore(2))
  first = await manager.create_job("owner-1", make_items("a", "b", "c"))
  second = await manager.create_job("owner-2", make_items("d", "e", "f"))

  await manager.admit_and_run(first.job_id)
  await manager.admit_and_run(second.job_id)
  await manager.join(first.job_id, timeout=5)
  await manager.join(second.job_id, timeout=5)

  assert task.max_active == 2
  assert len(task.calls) == 6


@pytest.mark.anyio
async def test_events_record_the_job_timeline(jobs_repo: InMemoryJobsRepository) -> None:
  manager = _manager(jobs_repo, RecordingTask(fail={"bad"}), concurrency=1)
  job = await manager.create_job("owner-1", make_items("good", "bad"))

  await manager.admit_and_run(job.job_id)
  await manager.join(job.job_id, timeout=5)

  events = await manager.list_events(job.job_id)
  assert [event.event_type for event in events] == ["job_created", "job_started", "item_completed", "item_failed", "job_finished"]
  assert events[-1].payload["status"] == "partial"
  assert events[2].payload["progress"] == 50
