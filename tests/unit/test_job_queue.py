from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from alegi.core.errors import QueueEmpty
from alegi.jobs.models import JobRecord
from alegi.jobs.queue import JobQueue, JobStateError
from tests.conftest import QUEUE
from tests.fakes import FakeClock, InMemoryJobsRepo


async def _ok(job: JobRecord) -> dict:
  return {"handled": job.id}


async def _boom(job: JobRecord) -> dict:
  raise RuntimeError("upstream exploded")


@pytest.mark.anyio
async def test_enqueue_creates_pending_job(job_queue: JobQueue, jobs_repo: InMemoryJobsRepo, clock: FakeClock) -> None:
  """New jobs start pending with no attempts and are eligible immediately."""
  job_id = await job_queue.enqueue(QUEUE, {"case_id": "c1"})
  job = jobs_repo.jobs[job_id]
  assert job.status == "pending"
  assert job.attempts == 0
  assert job.max_attempts == 3
  assert job.scheduled_for == clock.now
  assert job.data == {"case_id": "c1"}


@pytest.mark.anyio
async def test_duplicate_payloads_are_allowed(job_queue: JobQueue, jobs_repo: InMemoryJobsRepo) -> None:
  first = await job_queue.enqueue(QUEUE, {"case_id": "c1"})
  second = await job_queue.enqueue(QUEUE, {"case_id": "c1"})
  assert first != second
  assert len(jobs_repo.jobs) == 2


@pytest.mark.anyio
async def test_enqueue_rejects_non_positive_max_attempts(job_queue: JobQueue) -> None:
  with pytest.raises(ValueError):
    await job_queue.enqueue(QUEUE, {}, max_attempts=0)


@pytest.mark.anyio
async def test_claim_order_is_priority_then_oldest(job_queue: JobQueue, clock: FakeClock) -> None:
  low = await job_queue.enqueue(QUEUE, {"n": 1})
  clock.advance(1)
  high_old = await job_queue.enqueue(QUEUE, {"n": 2}, priority=10)
  clock.advance(1)
  high_new = await job_queue.enqueue(QUEUE, {"n": 3}, priority=10)

  claimed = [await job_queue.claim_next(QUEUE) for _ in range(3)]
  assert [job.id for job in claimed] == [high_old, high_new, low]
  assert all(job.status == "processing" and job.started_at == clock.now for job in claimed)
  assert isinstance(await job_queue.claim_next(QUEUE), QueueEmpty)


@pytest.mark.anyio
async def test_future_jobs_are_not_claimable(job_queue: JobQueue, clock: FakeClock) -> None:
  await job_queue.enqueue(QUEUE, {}, scheduled_for=clock.now + timedelta(minutes=5))
  assert isinstance(await job_queue.claim_next(QUEUE), QueueEmpty)
  clock.advance(300)
  assert isinstance(await job_queue.claim_next(QUEUE), JobRecord)


@pytest.mark.anyio
async def test_queues_are_isolated(job_queue: JobQueue) -> None:
  await job_queue.enqueue("other-queue", {})
  assert isinstance(await job_queue.claim_next(QUEUE), QueueEmpty)


@pytest.mark.anyio
async def test_concurrent_claims_lease_each_job_once(job_queue: JobQueue) -> None:
  """Racing workers never receive the same job."""
  ids = {await job_queue.enqueue(QUEUE, {"n": n}) for n in range(3)}
  results = await asyncio.gather(*(job_queue.claim_next(QUEUE) for _ in range(10)))
  claimed = [result.id for result in results if isinstance(result, JobRecord)]
  assert sorted(claimed) == sorted(ids)
  assert sum(1 for result in results if isinstance(result, QueueEmpty)) == 7


@pytest.mark.anyio
async def test_claim_by_id_only_leases_pending_jobs(job_queue: JobQueue) -> None:
  job_id = await job_queue.enqueue(QUEUE, {})
  assert (await job_queue.claim(job_id)).id == job_id
  assert isinstance(await job_queue.claim(job_id), QueueEmpty)
  assert isinstance(await job_queue.claim("missing"), QueueEmpty)


@pytest.mark.anyio
async def test_failures_back_off_then_fail_permanently(job_queue: JobQueue, jobs_repo: InMemoryJobsRepo, clock: FakeClock) -> None:
  """Each failure consumes an attempt; the last one is terminal."""
  job_id = await job_queue.enqueue(QUEUE, {})

  await job_queue.claim_next(QUEUE)
  retried = await job_queue.fail(job_id, "first")
  assert retried.status == "pending"
  assert retried.attempts == 1
  assert retried.scheduled_for == clock.now + timedelta(seconds=4)
  assert retried.error == "first"
  assert isinstance(await job_queue.claim_next(QUEUE), QueueEmpty)

  clock.advance(4)
  await job_queue.claim_next(QUEUE)
  retried = await job_queue.fail(job_id, "second")
  assert retried.attempts == 2
  assert retried.scheduled_for == clock.now + timedelta(seconds=8)

  clock.advance(8)
  await job_queue.claim_next(QUEUE)
  failed = await job_queue.fail(job_id, "third")
  assert failed.status == "failed"
  assert failed.attempts == 3
  assert failed.failed_at == clock.now
  assert failed.error == "third"

  clock.advance(3600)
  assert isinstance(await job_queue.claim_next(QUEUE), QueueEmpty)
  assert jobs_repo.jobs[job_id].attempts <= jobs_repo.jobs[job_id].max_attempts


@pytest.mark.anyio
async def test_single_attempt_jobs_fail_immediately(job_queue: JobQueue) -> None:
  job_id = await job_queue.enqueue(QUEUE, {}, max_attempts=1)
  await job_queue.claim_next(QUEUE)
  assert (await job_queue.fail(job_id, "nope")).status == "failed"


@pytest.mark.anyio
async def test_complete_and_fail_require_a_lease(job_queue: JobQueue) -> None:
  job_id = await job_queue.enqueue(QUEUE, {})
  with pytest.raises(JobStateError):
    await job_queue.complete(job_id, {})
  with pytest.raises(JobStateError):
    await job_queue.fail(job_id, "not leased")


@pytest.mark.anyio
async def test_complete_records_result_and_clears_error(job_queue: JobQueue, clock: FakeClock) -> None:
  job_id = await job_queue.enqueue(QUEUE, {})
  await job_queue.claim_next(QUEUE)
  await job_queue.fail(job_id, "flaky")
  clock.advance(10)
  await job_queue.claim_next(QUEUE)
  completed = await job_queue.complete(job_id, {"ok": True})
  assert completed.status == "completed"
  assert completed.result == {"ok": True}
  assert completed.error is None
  assert completed.completed_at == clock.now
  with pytest.raises(JobStateError):
    await job_queue.complete(job_id, {"again": True})


@pytest.mark.anyio
async def test_run_job_records_handler_errors(job_queue: JobQueue, jobs_repo: InMemoryJobsRepo) -> None:
  job_id = await job_queue.enqueue(QUEUE, {})
  job = await job_queue.claim_next(QUEUE)
  assert await job_queue.run_job(job, _boom) is False
  assert jobs_repo.jobs[job_id].status == "pending"
  assert jobs_repo.jobs[job_id].error == "upstream exploded"


@pytest.mark.anyio
async def test_long_errors_are_truncated(job_queue: JobQueue) -> None:
  job_id = await job_queue.enqueue(QUEUE, {})
  await job_queue.claim_next(QUEUE)
  retried = await job_queue.fail(job_id, "x" * 5000)
  assert len(retried.error) == 2000


@pytest.mark.anyio
async def test_batch_continues_after_a_failure(job_queue: JobQueue, jobs_repo: InMemoryJobsRepo) -> None:
  """One failing job does not stop the rest of the batch."""
  ids = [await job_queue.enqueue(QUEUE, {"fail": n == 1}) for n in range(3)]

  async def handler(job: JobRecord) -> dict:
    if job.data["fail"]:
      raise RuntimeError("bad case")
    return {"ok": True}

  batch = await job_queue.claim_batch(QUEUE, 5, handler)
  assert (batch.processed, batch.succeeded, batch.failed) == (3, 2, 1)
  assert batch.job_ids == ids
  assert batch.success_rate == pytest.approx(66.67)
  assert [jobs_repo.jobs[job_id].status for job_id in ids] == ["completed", "pending", "completed"]


@pytest.mark.anyio
async def test_batch_respects_size_and_validates_it(job_queue: JobQueue) -> None:
  for n in range(4):
    await job_queue.enqueue(QUEUE, {"n": n})
  batch = await job_queue.claim_batch(QUEUE, 2, _ok)
  assert batch.processed == 2
  with pytest.raises(ValueError):
    await job_queue.claim_batch(QUEUE, 0, _ok)


@pytest.mark.anyio
async def test_stats_count_every_status(job_queue: JobQueue) -> None:
  done = await job_queue.enqueue(QUEUE, {})
  await job_queue.enqueue(QUEUE, {})
  await job_queue.claim(done)
  await job_queue.complete(done, None)
  stats = await job_queue.stats(QUEUE)
  assert stats.as_dict() == {"queue": QUEUE, "pending": 1, "processing": 0, "completed": 1, "failed": 0, "total": 2}


@pytest.mark.anyio
async def test_cleanup_removes_old_terminal_jobs(job_queue: JobQueue, jobs_repo: InMemoryJobsRepo, clock: FakeClock) -> None:
  failed = await job_queue.enqueue(QUEUE, {}, max_attempts=1)
  completed = await job_queue.enqueue(QUEUE, {})
  await job_queue.claim(failed)
  await job_queue.fail(failed, "dead")
  await job_queue.claim(completed)
  await job_queue.complete(completed, None)
  clock.advance(48 * 3600)
  recent = await job_queue.enqueue(QUEUE, {}, max_attempts=1)
  await job_queue.claim(recent)
  await job_queue.fail(recent, "fresh")

  assert await job_queue.cleanup(QUEUE, 24) == 1
  assert failed not in jobs_repo.jobs
  assert completed in jobs_repo.jobs and recent in jobs_repo.jobs
  assert await job_queue.cleanup(QUEUE, 24, include_completed=True) == 1
  assert set(jobs_repo.jobs) == {recent}
  with pytest.raises(ValueError):
    await job_queue.cleanup(QUEUE, -1)


@pytest.mark.anyio
async def test_recover_stale_fails_expired_leases(job_queue: JobQueue, jobs_repo: InMemoryJobsRepo, clock: FakeClock) -> None:
  stale = await job_queue.enqueue(QUEUE, {})
  await job_queue.claim(stale)
  clock.advance(1000)
  fresh = await job_queue.enqueue(QUEUE, {})
  await job_queue.claim(fresh)

  recovered = await job_queue.recover_stale(QUEUE, timedelta(seconds=900))
  assert recovered == [stale]
  assert jobs_repo.jobs[stale].status == "pending"
  assert jobs_repo.jobs[stale].attempts == 1
  assert "Lease expired" in jobs_repo.jobs[stale].error
  assert jobs_repo.jobs[fresh].status == "processing"


@pytest.mark.anyio
async def test_exhaustion_hook_runs_only_on_permanent_failure(job_queue: JobQueue, clock: FakeClock) -> None:
  exhausted: list[JobRecord] = []

  async def _record(job: JobRecord) -> None:
    exhausted.append(job)

  job_id = await job_queue.enqueue(QUEUE, {}, max_attempts=2)
  await job_queue.run_job(await job_queue.claim(job_id), _boom, on_exhausted=_record)
  assert exhausted == []

  clock.advance(60)
  await job_queue.run_job(await job_queue.claim(job_id), _boom, on_exhausted=_record)
  assert [(job.id, job.status, job.attempts, job.error) for job in exhausted] == [(job_id, "failed", 2, "upstream exploded")]


@pytest.mark.anyio
async def test_exhaustion_hook_errors_do_not_undo_the_failure(job_queue: JobQueue, jobs_repo: InMemoryJobsRepo, caplog: pytest.LogCaptureFixture) -> None:
  async def _broken(job: JobRecord) -> None:
    raise RuntimeError("database unavailable")

  job_id = await job_queue.enqueue(QUEUE, {}, max_attempts=1)
  await job_queue.claim(job_id)
  failed = await job_queue.fail(job_id, "worker crashed", on_exhausted=_broken)

  assert failed.status == "failed"
  assert jobs_repo.jobs[job_id].status == "failed"
  assert "Exhaustion hook failed" in caplog.text
