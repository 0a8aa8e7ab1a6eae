"""
Durable job queue backed by the jobs table.

Jobs are rows with a due time and a lock. A polling loop claims due rows with a
conditional UPDATE (only the worker whose UPDATE matched the row runs it),
dispatches the typed payload to the handler registered for the job name and
records the handler's Outcome back on the row.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import get_settings
from app.core.timeutils import as_utc, utcnow
from app.models.job import Job
from app.schemas.job import KNOWN_JOB_NAMES, JobFilter, JobStatusFilter, parse_job_payload

logger = logging.getLogger(__name__)


class JobNotFoundError(Exception):
    """Raised when a job id does not exist in the queue."""


class UnknownJobError(ValueError):
    """Raised when scheduling a job name that has no payload type."""


@dataclass(frozen=True)
class Success:
    message: Optional[str] = None


@dataclass(frozen=True)
class RetryableFailure:
    reason: str


@dataclass(frozen=True)
class FatalFailure:
    reason: str


Outcome = Union[Success, RetryableFailure, FatalFailure]


@dataclass(frozen=True)
class JobContext:
    """Run-time information handed to a handler alongside its payload."""

    job_id: UUID
    name: str
    fail_count: int
    queue: "JobQueue"

    @property
    def attempt(self) -> int:
        """1-based number of the current attempt."""
        return self.fail_count + 1


Handler = Callable[[BaseModel, JobContext], Awaitable[Outcome]]


@dataclass
class JobDefinition:
    name: str
    handler: Handler
    concurrency: int


@dataclass
class _Claim:
    job_id: UUID
    name: str
    data: Dict[str, Any]
    fail_count: int
    claimed_at: datetime


When = Union[str, datetime, timedelta, None]


def status_clauses(status: JobStatusFilter) -> list:
    """SQL criteria deriving a job status from its lock and timestamp columns."""
    if status == JobStatusFilter.RUNNING:
        return [Job.locked_at.is_not(None)]
    if status == JobStatusFilter.SCHEDULED:
        return [Job.next_run_at.is_not(None), Job.locked_at.is_(None), Job.failed_at.is_(None)]
    if status == JobStatusFilter.COMPLETED:
        return [
            Job.last_finished_at.is_not(None),
            Job.next_run_at.is_(None),
            Job.failed_at.is_(None),
            Job.locked_at.is_(None),
        ]
    if status == JobStatusFilter.FAILED:
        return [Job.failed_at.is_not(None)]
    return []


def derive_status(job: Job) -> JobStatusFilter:
    """Single status label for one job, checked in dashboard priority order."""
    if job.locked_at is not None:
        return JobStatusFilter.RUNNING
    if job.failed_at is not None:
        return JobStatusFilter.FAILED
    if job.last_finished_at is not None and job.next_run_at is None:
        return JobStatusFilter.COMPLETED
    # Due but not yet claimed still counts as scheduled here
    return JobStatusFilter.SCHEDULED


class JobQueue:
    """Polling scheduler with bounded global and per-name concurrency."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        process_every: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        default_concurrency: Optional[int] = None,
        lock_lifetime: Optional[timedelta] = None,
        retry_delay: Optional[timedelta] = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self.process_every = process_every if process_every is not None else settings.job_process_every_seconds
        self.max_concurrency = max_concurrency or settings.job_max_concurrency
        self.default_concurrency = default_concurrency or settings.job_default_concurrency
        self.lock_lifetime = lock_lifetime or timedelta(seconds=settings.job_lock_lifetime_seconds)
        self.retry_delay = retry_delay if retry_delay is not None else timedelta(seconds=settings.job_retry_delay_seconds)

        self._definitions: Dict[str, JobDefinition] = {}
        self._running: Dict[UUID, asyncio.Task] = {}
        self._running_by_name: Counter = Counter()
        self._poller: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None
        self._claim_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._poller is not None and not self._poller.done()

    @property
    def definitions(self) -> Dict[str, JobDefinition]:
        return dict(self._definitions)

    def define(self, name: str, handler: Handler, concurrency: Optional[int] = None) -> None:
        """
        Register the handler invoked when a job with this name becomes due.

        Args:
            name: Job name
            handler: Async callable (payload, context) -> Outcome
            concurrency: Per-name ceiling, defaults to the queue default
        """
        self._definitions[name] = JobDefinition(
            name=name,
            handler=handler,
            concurrency=concurrency or self.default_concurrency,
        )
        logger.debug(f"Defined job '{name}' (concurrency {self._definitions[name].concurrency})")

    # Scheduling and queries

    @staticmethod
    def _resolve_when(when: When) -> datetime:
        if when is None or when == "now":
            return utcnow()
        if isinstance(when, timedelta):
            return utcnow() + when
        if isinstance(when, datetime):
            return as_utc(when)
        raise ValueError(f"Unsupported schedule time: {when!r}")

    async def schedule(self, when: When, name: str, data: Union[BaseModel, Dict[str, Any]]) -> Job:
        """
        Persist a new job due at `when`.

        Args:
            when: "now", an absolute datetime or a delay from now
            name: Job name
            data: Payload matching the job name

        Returns:
            The persisted Job

        Raises:
            UnknownJobError: If the name has no payload type
        """
        if name not in KNOWN_JOB_NAMES:
            raise UnknownJobError(f"Unknown job name: {name}")

        payload = parse_job_payload(name, data)
        job = Job(
            name=name,
            data=payload.model_dump(mode="json"),
            next_run_at=self._resolve_when(when),
            fail_count=0,
        )

        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)

        logger.info(f"Job {job.id}: scheduled '{name}' for {job.next_run_at}")
        return job

    async def now(self, name: str, data: Union[BaseModel, Dict[str, Any]]) -> Job:
        """Schedule a job that is due immediately."""
        return await self.schedule("now", name, data)

    @staticmethod
    def _filter_clauses(job_filter: Optional[JobFilter]) -> list:
        if job_filter is None:
            return []

        clauses = []
        if job_filter.job_id is not None:
            clauses.append(Job.id == job_filter.job_id)
        if job_filter.name:
            clauses.append(Job.name == job_filter.name)
        if job_filter.video_id is not None:
            clauses.append(Job.data["video_id"].as_string() == str(job_filter.video_id))
        clauses.extend(status_clauses(job_filter.status))
        return clauses

    async def jobs(
        self,
        job_filter: Optional[JobFilter] = None,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[Job]:
        """
        Query persisted jobs.

        Args:
            job_filter: Criteria; None returns every job
            limit: Maximum rows to return
            skip: Rows to skip for pagination

        Returns:
            Matching jobs ordered by due time
        """
        query = (
            select(Job)
            .where(*self._filter_clauses(job_filter))
            .order_by(Job.next_run_at.desc(), Job.created_at.desc())
            .offset(skip)
        )
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count(self, job_filter: Optional[JobFilter] = None) -> int:
        query = select(func.count(Job.id)).where(*self._filter_clauses(job_filter))
        async with self._session_factory() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    async def count_by_name(self) -> Dict[str, int]:
        query = select(Job.name, func.count(Job.id)).group_by(Job.name)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return {name: total for name, total in result.all()}

    async def get(self, job_id: UUID) -> Optional[Job]:
        async with self._session_factory() as session:
            return await session.get(Job, job_id)

    async def cancel(self, job_filter: JobFilter, include_locked: bool = True) -> int:
        """
        Remove matching jobs so they never run again.

        A handler already executing for a removed job is not interrupted; its
        final bookkeeping finds no row and is dropped.

        Args:
            job_filter: Criteria selecting the jobs to remove
            include_locked: When False, jobs currently held by a worker are kept

        Returns:
            Number of jobs removed
        """
        clauses = self._filter_clauses(job_filter)
        if not clauses:
            raise ValueError("Refusing to cancel without any filter criteria")
        if not include_locked:
            clauses.append(Job.locked_at.is_(None))

        async with self._session_factory() as session:
            result = await session.execute(delete(Job).where(*clauses))
            await session.commit()

        removed = result.rowcount or 0
        if removed:
            logger.info(f"Cancelled {removed} job(s) matching {job_filter.model_dump(exclude_none=True)}")
        return removed

    async def retry(self, job_id: UUID) -> Job:
        """
        Reset a job's failure state and make it due now.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(fail_count=0, failed_at=None, fail_reason=None, next_run_at=utcnow())
            )
            await session.commit()
            if not result.rowcount:
                raise JobNotFoundError(f"Job {job_id} not found")
            job = await session.get(Job, job_id, populate_existing=True)

        logger.info(f"Job {job_id}: reset for retry")
        return job

    # Dispatch

    def _available_names(self) -> Dict[str, int]:
        return {
            name: definition.concurrency - self._running_by_name[name]
            for name, definition in self._definitions.items()
            if definition.concurrency - self._running_by_name[name] > 0
        }

    async def _claim_due_jobs(self) -> List[_Claim]:
        capacity = self.max_concurrency - len(self._running)
        available = self._available_names()
        if capacity <= 0 or not available:
            return []

        now = utcnow()
        stale_before = now - self.lock_lifetime
        claimable = or_(Job.locked_at.is_(None), Job.locked_at < stale_before)

        claims: List[_Claim] = []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job.id, Job.name, Job.data, Job.fail_count)
                .where(
                    Job.name.in_(list(available)),
                    Job.next_run_at.is_not(None),
                    Job.next_run_at <= now,
                    claimable,
                )
                .order_by(Job.next_run_at)
                .limit(self.max_concurrency * 4)
            )

            for job_id, name, data, fail_count in result.all():
                if len(claims) >= capacity:
                    break
                if available.get(name, 0) <= 0 or job_id in self._running:
                    continue

                # Lock and claim in one statement; a concurrent poller that got
                # here first leaves nothing for this UPDATE to match
                claimed = await session.execute(
                    update(Job)
                    .where(Job.id == job_id, claimable)
                    .values(locked_at=now, last_run_at=now)
                )
                await session.commit()
                if claimed.rowcount != 1:
                    continue

                available[name] -= 1
                claims.append(_Claim(job_id, name, data or {}, fail_count or 0, now))

        return claims

    async def process_due_jobs(self) -> int:
        """
        Run one polling tick: claim due jobs and start their handlers.

        Returns:
            Number of jobs started
        """
        async with self._claim_lock:
            claims = await self._claim_due_jobs()
            for claim in claims:
                task = asyncio.create_task(self._run_job(claim), name=f"job-{claim.name}-{claim.job_id}")
                self._running[claim.job_id] = task
                self._running_by_name[claim.name] += 1
                task.add_done_callback(lambda _t, c=claim: self._release_slot(c))

        if claims:
            logger.debug(f"Started {len(claims)} job(s)")
        return len(claims)

    def _release_slot(self, claim: _Claim) -> None:
        self._running.pop(claim.job_id, None)
        self._running_by_name[claim.name] -= 1

    async def _run_job(self, claim: _Claim) -> None:
        definition = self._definitions[claim.name]
        context = JobContext(job_id=claim.job_id, name=claim.name, fail_count=claim.fail_count, queue=self)
        logger.info(f"Job {claim.job_id}: running '{claim.name}' (attempt {context.attempt})")

        try:
            payload = parse_job_payload(claim.name, claim.data)
            outcome = await definition.handler(payload, context)
            if not isinstance(outcome, (Success, RetryableFailure, FatalFailure)):
                outcome = FatalFailure(f"Handler returned {outcome!r} instead of an outcome")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Job {claim.job_id}: handler '{claim.name}' raised: {e}", exc_info=True)
            outcome = FatalFailure(str(e) or e.__class__.__name__)

        try:
            await self._finish(claim, outcome)
        except Exception as e:
            logger.error(f"Job {claim.job_id}: could not record outcome: {e}", exc_info=True)

    async def _finish(self, claim: _Claim, outcome: Outcome) -> None:
        now = utcnow()
        values: Dict[str, Any] = {"locked_at": None, "last_finished_at": now}

        if isinstance(outcome, Success):
            values.update(next_run_at=None, failed_at=None, fail_reason=None)
        else:
            values.update(
                fail_count=Job.fail_count + 1,
                failed_at=now,
                fail_reason=outcome.reason,
                next_run_at=now + self.retry_delay if isinstance(outcome, RetryableFailure) else None,
            )

        async with self._session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == claim.job_id, Job.locked_at == claim.claimed_at)
                .values(**values)
            )
            await session.commit()

        if not result.rowcount:
            logger.info(f"Job {claim.job_id}: removed or re-locked while running, outcome dropped")
        elif isinstance(outcome, Success):
            logger.info(f"Job {claim.job_id}: '{claim.name}' completed")
        elif isinstance(outcome, RetryableFailure):
            logger.warning(f"Job {claim.job_id}: '{claim.name}' failed, will retry: {outcome.reason}")
        else:
            logger.error(f"Job {claim.job_id}: '{claim.name}' failed permanently: {outcome.reason}")

    # Lifecycle

    async def _poll(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.process_due_jobs()
            except Exception as e:
                logger.error(f"Job queue poll failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.process_every)
            except asyncio.TimeoutError:
                pass

    async def start(self) -> None:
        """Start the polling loop."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._poller = asyncio.create_task(self._poll(), name="job-queue-poller")
        logger.info(
            f"Job queue started (every {self.process_every}s, max concurrency {self.max_concurrency}, "
            f"{len(self._definitions)} job types)"
        )

    async def stop(self) -> None:
        """Stop polling and wait for in-flight handlers to finish."""
        if self._poller is not None:
            self._stopping.set()
            await self._poller
            self._poller = None

        if self._running:
            logger.info(f"Waiting for {len(self._running)} running job(s)")
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)
        logger.info("Job queue stopped")

    async def wait_for_running(self) -> None:
        """Wait until every handler started so far has finished."""
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)

    async def run_until_idle(self, max_ticks: int = 100) -> None:
        """
        Drain due work: tick, wait for handlers, repeat until nothing is due.

        Args:
            max_ticks: Upper bound on ticks, guarding against jobs that keep
                rescheduling themselves
        """
        for _ in range(max_ticks):
            started = await self.process_due_jobs()
            if self._running:
                await self.wait_for_running()
                continue
            if not started:
                return
        logger.warning(f"Job queue still busy after {max_ticks} ticks")
