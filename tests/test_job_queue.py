import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import update

from app.core.timeutils import as_utc, utcnow
from app.models.job import Job
from app.schemas.job import JobFilter, JobStatusFilter, RecoverVideoJobData, SoftDeleteVideoJobData
from app.services.job_queue import (
    FatalFailure,
    JobNotFoundError,
    JobQueue,
    RetryableFailure,
    Success,
    UnknownJobError,
    derive_status,
)

RECOVER = "recoverVideo"
SOFT_DELETE = "softDeleteVideo"


def make_queue(session_factory, **overrides) -> JobQueue:
    options = dict(
        process_every=0.05,
        max_concurrency=5,
        default_concurrency=3,
        lock_lifetime=timedelta(minutes=10),
        retry_delay=timedelta(0),
    )
    options.update(overrides)
    return JobQueue(session_factory, **options)


@pytest_asyncio.fixture
async def queue(session_factory):
    job_queue = make_queue(session_factory)
    yield job_queue
    await job_queue.stop()


# Scheduling and queries

@pytest.mark.asyncio
async def test_schedule_persists_typed_payload(queue):
    video_id = uuid4()

    job = await queue.schedule(timedelta(hours=1), RECOVER, RecoverVideoJobData(video_id=video_id))
    stored = await queue.get(job.id)

    assert stored.name == RECOVER
    assert stored.data == {"job_type": RECOVER, "video_id": str(video_id)}
    assert as_utc(stored.next_run_at) > utcnow() + timedelta(minutes=59)
    assert derive_status(stored) == JobStatusFilter.SCHEDULED


@pytest.mark.asyncio
async def test_schedule_rejects_unknown_name_and_mismatched_payload(queue):
    with pytest.raises(UnknownJobError):
        await queue.now("sendNewsletter", {"video_id": str(uuid4())})

    with pytest.raises(ValueError):
        await queue.now(SOFT_DELETE, RecoverVideoJobData(video_id=uuid4()))


@pytest.mark.asyncio
async def test_jobs_filter_by_name_and_video_id(queue):
    target = uuid4()
    await queue.now(RECOVER, RecoverVideoJobData(video_id=target))
    await queue.now(SOFT_DELETE, SoftDeleteVideoJobData(video_id=target))
    await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))

    assert len(await queue.jobs()) == 3
    assert len(await queue.jobs(JobFilter(name=RECOVER))) == 2
    assert len(await queue.jobs(JobFilter(video_id=target))) == 2

    matching = await queue.jobs(JobFilter(name=RECOVER, video_id=target))
    assert len(matching) == 1
    assert matching[0].data["video_id"] == str(target)

    assert await queue.count(JobFilter(name=SOFT_DELETE)) == 1
    assert await queue.count_by_name() == {RECOVER: 2, SOFT_DELETE: 1}


@pytest.mark.asyncio
async def test_cancel_requires_criteria(queue):
    with pytest.raises(ValueError):
        await queue.cancel(JobFilter())


@pytest.mark.asyncio
async def test_cancelled_job_is_never_dispatched(queue):
    calls = []

    async def handler(payload, context):
        calls.append(payload.video_id)
        return Success()

    queue.define(SOFT_DELETE, handler)
    video_id = uuid4()
    await queue.now(SOFT_DELETE, SoftDeleteVideoJobData(video_id=video_id))

    assert await queue.cancel(JobFilter(name=SOFT_DELETE, video_id=video_id)) == 1
    await queue.run_until_idle()

    assert calls == []
    assert await queue.jobs() == []


# Dispatch and outcomes

@pytest.mark.asyncio
async def test_success_marks_job_completed(queue):
    async def handler(payload, context):
        assert context.attempt == 1
        return Success()

    queue.define(RECOVER, handler)
    job = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))

    await queue.run_until_idle()
    finished = await queue.get(job.id)

    assert finished.locked_at is None
    assert finished.last_finished_at is not None
    assert finished.next_run_at is None
    assert derive_status(finished) == JobStatusFilter.COMPLETED
    assert await queue.count(JobFilter(status=JobStatusFilter.COMPLETED)) == 1


@pytest.mark.asyncio
async def test_retryable_failure_reschedules_after_delay(session_factory):
    queue = make_queue(session_factory, retry_delay=timedelta(minutes=1))

    async def handler(payload, context):
        return RetryableFailure("storage offline")

    queue.define(RECOVER, handler)
    job = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))

    await queue.run_until_idle()
    failed = await queue.get(job.id)

    assert failed.fail_count == 1
    assert failed.fail_reason == "storage offline"
    assert failed.failed_at is not None
    assert as_utc(failed.next_run_at) > utcnow() + timedelta(seconds=30)
    assert derive_status(failed) == JobStatusFilter.FAILED


@pytest.mark.asyncio
async def test_status_counts_partition_jobs_after_retryable_failure(session_factory):
    queue = make_queue(session_factory, retry_delay=timedelta(minutes=1))

    async def handler(payload, context):
        return RetryableFailure("storage offline")

    queue.define(RECOVER, handler)
    await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))
    await queue.run_until_idle()
    await queue.schedule(timedelta(hours=1), RECOVER, RecoverVideoJobData(video_id=uuid4()))

    counts = {
        status: await queue.count(JobFilter(status=status))
        for status in (
            JobStatusFilter.RUNNING,
            JobStatusFilter.SCHEDULED,
            JobStatusFilter.COMPLETED,
            JobStatusFilter.FAILED,
        )
    }
    scheduled = await queue.jobs(JobFilter(status=JobStatusFilter.SCHEDULED))

    assert sum(counts.values()) == await queue.count() == 2
    assert counts[JobStatusFilter.FAILED] == 1
    assert counts[JobStatusFilter.SCHEDULED] == 1
    assert [derive_status(job) for job in scheduled] == [JobStatusFilter.SCHEDULED]


@pytest.mark.asyncio
async def test_retryable_failure_runs_again_with_growing_fail_count(queue):
    attempts = []

    async def handler(payload, context):
        attempts.append(context.fail_count)
        if context.fail_count < 2:
            return RetryableFailure("not yet")
        return Success()

    queue.define(RECOVER, handler)
    job = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))

    await queue.run_until_idle()
    finished = await queue.get(job.id)

    assert attempts == [0, 1, 2]
    assert finished.fail_count == 2
    assert finished.failed_at is None
    assert derive_status(finished) == JobStatusFilter.COMPLETED


@pytest.mark.asyncio
async def test_fatal_failure_and_exceptions_are_not_retried(queue):
    calls = []

    async def fatal(payload, context):
        calls.append("fatal")
        return FatalFailure("gave up")

    async def broken(payload, context):
        calls.append("broken")
        raise RuntimeError("handler bug")

    queue.define(RECOVER, fatal)
    queue.define(SOFT_DELETE, broken)
    fatal_job = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))
    broken_job = await queue.now(SOFT_DELETE, SoftDeleteVideoJobData(video_id=uuid4()))

    await queue.run_until_idle()

    assert sorted(calls) == ["broken", "fatal"]
    for job_id, reason in ((fatal_job.id, "gave up"), (broken_job.id, "handler bug")):
        job = await queue.get(job_id)
        assert job.fail_count == 1
        assert job.fail_reason == reason
        assert job.next_run_at is None
    assert await queue.count(JobFilter(status=JobStatusFilter.FAILED)) == 2


@pytest.mark.asyncio
async def test_retry_resets_failed_job(queue):
    outcomes = [FatalFailure("first run fails"), Success()]

    async def handler(payload, context):
        return outcomes.pop(0)

    queue.define(RECOVER, handler)
    job = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))
    await queue.run_until_idle()

    reset = await queue.retry(job.id)
    assert reset.fail_count == 0
    assert reset.failed_at is None
    assert reset.fail_reason is None
    assert reset.next_run_at is not None

    await queue.run_until_idle()
    assert derive_status(await queue.get(job.id)) == JobStatusFilter.COMPLETED
    assert outcomes == []


@pytest.mark.asyncio
async def test_retry_unknown_job(queue):
    with pytest.raises(JobNotFoundError):
        await queue.retry(uuid4())


@pytest.mark.asyncio
async def test_jobs_for_undefined_names_stay_queued(queue):
    job = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))

    assert await queue.process_due_jobs() == 0
    assert derive_status(await queue.get(job.id)) == JobStatusFilter.SCHEDULED


@pytest.mark.asyncio
async def test_future_jobs_are_not_claimed(queue):
    async def handler(payload, context):
        return Success()

    queue.define(RECOVER, handler)
    await queue.schedule(timedelta(days=7), RECOVER, RecoverVideoJobData(video_id=uuid4()))

    assert await queue.process_due_jobs() == 0


# Concurrency

@pytest.mark.asyncio
async def test_each_due_job_is_claimed_by_one_worker(session_factory):
    first = make_queue(session_factory)
    second = make_queue(session_factory)
    runs = []

    async def handler(payload, context):
        runs.append(context.job_id)
        return Success()

    first.define(RECOVER, handler)
    second.define(RECOVER, handler)
    job = await first.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))

    started = await asyncio.gather(first.process_due_jobs(), second.process_due_jobs())
    await first.wait_for_running()
    await second.wait_for_running()

    assert sum(started) == 1
    assert runs == [job.id]


@pytest.mark.asyncio
async def test_per_name_and_global_ceilings(session_factory):
    queue = make_queue(session_factory, max_concurrency=3, default_concurrency=3)
    release = asyncio.Event()
    running = []

    async def blocking(payload, context):
        running.append(context.name)
        await release.wait()
        return Success()

    queue.define(RECOVER, blocking, concurrency=2)
    queue.define(SOFT_DELETE, blocking)
    for _ in range(4):
        await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))
    for _ in range(4):
        await queue.now(SOFT_DELETE, SoftDeleteVideoJobData(video_id=uuid4()))

    started = await queue.process_due_jobs()
    await asyncio.sleep(0)

    assert started == 3
    assert running.count(RECOVER) <= 2
    assert await queue.process_due_jobs() == 0
    assert await queue.count(JobFilter(status=JobStatusFilter.RUNNING)) == 3

    release.set()
    await queue.run_until_idle()
    assert await queue.count(JobFilter(status=JobStatusFilter.COMPLETED)) == 8


@pytest.mark.asyncio
async def test_stale_lock_is_reclaimed_fresh_lock_is_not(session_factory, queue):
    async def handler(payload, context):
        return Success()

    queue.define(RECOVER, handler)
    stale = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))
    fresh = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))

    async with session_factory() as session:
        await session.execute(
            update(Job).where(Job.id == stale.id).values(locked_at=utcnow() - timedelta(minutes=11))
        )
        await session.execute(
            update(Job).where(Job.id == fresh.id).values(locked_at=utcnow() - timedelta(minutes=1))
        )
        await session.commit()

    assert await queue.process_due_jobs() == 1
    await queue.wait_for_running()

    assert derive_status(await queue.get(stale.id)) == JobStatusFilter.COMPLETED
    assert derive_status(await queue.get(fresh.id)) == JobStatusFilter.RUNNING


@pytest.mark.asyncio
async def test_cancel_while_running(queue):
    release = asyncio.Event()

    async def blocking(payload, context):
        await release.wait()
        return Success()

    queue.define(RECOVER, blocking)
    job = await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))
    assert await queue.process_due_jobs() == 1

    assert await queue.cancel(JobFilter(job_id=job.id), include_locked=False) == 0
    assert await queue.cancel(JobFilter(job_id=job.id)) == 1

    release.set()
    await queue.wait_for_running()

    assert await queue.get(job.id) is None


@pytest.mark.asyncio
async def test_start_polls_until_stopped(queue):
    done = asyncio.Event()

    async def handler(payload, context):
        done.set()
        return Success()

    queue.define(RECOVER, handler)
    await queue.start()
    assert queue.is_running

    await queue.now(RECOVER, RecoverVideoJobData(video_id=uuid4()))
    await asyncio.wait_for(done.wait(), timeout=5)

    await queue.stop()
    assert not queue.is_running
