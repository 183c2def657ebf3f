"""Job runner: explicit scheduler state machine over persisted office jobs.

queued -> running (progress 5) -> done (progress 100, result)
                               -> queued (attempts < max, available_at = now + backoff)
                               -> failed (attempts == max, progress 100, last error kept)

The runner never re-invokes itself: run_pending() picks due queued jobs, and
run_forever() loops over it. Time comes from an injected Clock, so backoff is
testable without real timers.
"""

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from snt_ledger.config import settings
from snt_ledger.jobs.payloads import parse_payload
from snt_ledger.models import JobStatus, OfficeJob
from snt_ledger.services.clock import Clock, SystemClock
from snt_ledger.services.context import MutationContext
from snt_ledger.services.errors import InvalidTransition, JobHandlerError, JobTimeout, NotFound
from snt_ledger.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

START_PROGRESS = 5
DONE_PROGRESS = 100
MAX_RESULT_ERRORS = 20
MAX_RESULT_LINKS = 10


def to_json(value: Any) -> Any:
    """Make handler results JSON-safe (money as strings, dates as ISO)."""
    if isinstance(value, dict):
        return {str(k): to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def summarize_result(result: dict[str, Any] | None) -> dict[str, Any]:
    """Truncate long lists in a handler result: errors to 20, links to 10."""
    data = to_json(result or {})
    for key, limit in (("errors", MAX_RESULT_ERRORS), ("links", MAX_RESULT_LINKS)):
        items = data.get(key)
        if isinstance(items, list) and len(items) > limit:
            data[key] = items[:limit]
            data[f"{key}_truncated"] = len(items) - limit
    return data


class JobContext:
    """What a handler sees of the runner: identity, progress and a guarded ledger."""

    def __init__(
        self,
        job_id: int,
        job_type: str,
        attempt: int,
        actor_id: str | None,
        session_factory: sessionmaker,
        clock: Clock,
        services: dict[str, Any] | None = None,
    ):
        self.job_id = job_id
        self.job_type = job_type
        self.attempt = attempt
        self.actor_id = actor_id
        self.session_factory = session_factory
        self.clock = clock
        self.services = services or {}
        self.timeout: float | None = None
        self.abandoned = threading.Event()

    def checkpoint(self) -> None:
        """Raise if the runner gave up on this attempt (timeout)."""
        if self.abandoned.is_set():
            raise JobTimeout(self.job_id, self.timeout or 0)

    def mutation(self, reason: str | None = None) -> MutationContext:
        return MutationContext(actor_id=self.actor_id or "system", reason=reason)

    @contextmanager
    def ledger(self) -> Iterator[LedgerStore]:
        """LedgerStore on a fresh session whose commit is refused once the attempt is abandoned."""
        db = self.session_factory()
        store = LedgerStore(db, clock=self.clock)
        store.commit_guard = self.checkpoint
        try:
            yield store
        finally:
            db.close()

    def report_progress(self, progress: int) -> None:
        """Persist coarse progress (own session; call outside ledger transactions)."""
        self.checkpoint()
        value = max(0, min(DONE_PROGRESS, int(progress)))
        with self.session_factory() as db:
            db.execute(update(OfficeJob).where(OfficeJob.id == self.job_id).values(progress=value))
            db.commit()


Handler = Callable[[JobContext, Any], Any]


class JobRunner:
    """Enqueues, schedules and executes office jobs with retries and timeouts."""

    def __init__(
        self,
        session_factory: sessionmaker,
        handlers: dict[str, Handler] | None = None,
        clock: Clock | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff: float | None = None,
        services: dict[str, Any] | None = None,
    ):
        if handlers is None:
            from snt_ledger.jobs.handlers import HANDLERS

            handlers = HANDLERS
        self.session_factory = session_factory
        self.handlers = dict(handlers)
        self.clock = clock or SystemClock()
        self.timeout = settings.job_timeout_seconds if timeout is None else timeout
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.backoff = settings.job_backoff_seconds if backoff is None else backoff
        self.services = services or {}

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Public job contract
    # ------------------------------------------------------------------

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        actor_id: str | None = None,
        max_attempts: int | None = None,
    ) -> int:
        """Validate payload and store a queued job.

        Raises:
            ValidationError: Unknown type or invalid payload (nothing is stored)
        """
        model = parse_payload(job_type, payload)
        if job_type not in self.handlers:
            raise NotFound("Job handler", job_type)
        with self._session() as db:
            job = OfficeJob(
                type=job_type,
                status=JobStatus.QUEUED,
                progress=0,
                payload=model.model_dump(mode="json"),
                attempts=0,
                max_attempts=max_attempts or self.max_attempts,
                available_at=self.clock.now(),
                actor_id=actor_id,
            )
            db.add(job)
            db.commit()
            job_id = job.id
        logger.info("Enqueued job %d (%s) by %s", job_id, job_type, actor_id)
        return job_id

    def get(self, job_id: int) -> OfficeJob:
        """Load a job snapshot (detached from any session)."""
        with self._session() as db:
            job = db.get(OfficeJob, job_id)
            if job is None:
                raise NotFound("Job", job_id)
            db.expunge(job)
            return job

    def list_jobs(self, status: JobStatus | None = None, limit: int = 100) -> list[OfficeJob]:
        with self._session() as db:
            query = select(OfficeJob).order_by(OfficeJob.id.desc()).limit(limit)
            if status is not None:
                query = query.where(OfficeJob.status == status)
            jobs = list(db.scalars(query))
            for job in jobs:
                db.expunge(job)
            return jobs

    def retry(self, job_id: int) -> OfficeJob:
        """Re-queue a failed job with attempts reset.

        Raises:
            InvalidTransition: If the job is not failed
        """
        with self._session() as db:
            job = db.get(OfficeJob, job_id)
            if job is None:
                raise NotFound("Job", job_id)
            if job.status != JobStatus.FAILED:
                raise InvalidTransition("job", job_id, job.status.value, "retry")
            job.status = JobStatus.QUEUED
            job.attempts = 0
            job.progress = 0
            job.available_at = self.clock.now()
            job.finished_at = None
            db.commit()
            db.refresh(job)
            db.expunge(job)
        logger.info("Job %d re-queued for retry", job_id)
        return job

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def _claim(self, job_id: int) -> OfficeJob | None:
        """Atomically move a due queued job to running; None if not claimable."""
        now = self.clock.now()
        with self._session() as db:
            claimed = db.execute(
                update(OfficeJob)
                .where(
                    OfficeJob.id == job_id,
                    OfficeJob.status == JobStatus.QUEUED,
                    OfficeJob.available_at <= now,
                )
                .values(
                    status=JobStatus.RUNNING,
                    attempts=OfficeJob.attempts + 1,
                    progress=START_PROGRESS,
                    started_at=now,
                )
            ).rowcount
            db.commit()
            if claimed != 1:
                return None
            job = db.get(OfficeJob, job_id)
            db.expunge(job)
            return job

    async def _execute(self, handler: Handler, ctx: JobContext, payload: Any) -> Any:
        if inspect.iscoroutinefunction(handler):
            return await asyncio.wait_for(handler(ctx, payload), self.timeout)
        return await asyncio.wait_for(asyncio.to_thread(handler, ctx, payload), self.timeout)

    def _finish(self, job_id: int, **values: Any) -> OfficeJob:
        with self._session() as db:
            db.execute(update(OfficeJob).where(OfficeJob.id == job_id).values(**values))
            db.commit()
            job = db.get(OfficeJob, job_id)
            db.expunge(job)
            return job

    async def process(self, job_id: int) -> OfficeJob | None:
        """Run one attempt of a job.

        Jobs that are not queued, or not yet due, are left untouched (returns None).
        Handler errors and timeouts are captured into the job record, never raised.
        """
        job = self._claim(job_id)
        if job is None:
            return None

        ctx = JobContext(
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempts,
            actor_id=job.actor_id,
            session_factory=self.session_factory,
            clock=self.clock,
            services=self.services,
        )
        ctx.timeout = self.timeout
        logger.info("Job %d (%s) attempt %d/%d started", job.id, job.type, job.attempts, job.max_attempts)

        try:
            handler = self.handlers.get(job.type)
            if handler is None:
                raise JobHandlerError(f"No handler registered for job type {job.type}")
            payload = parse_payload(job.type, job.payload)
            result = await self._execute(handler, ctx, payload)
        except asyncio.TimeoutError:
            ctx.abandoned.set()
            return self._record_failure(job, str(JobTimeout(job.id, self.timeout)))
        except Exception as e:
            logger.debug("Job %d handler error", job.id, exc_info=True)
            return self._record_failure(job, f"{type(e).__name__}: {e}")

        done = self._finish(
            job.id,
            status=JobStatus.DONE,
            progress=DONE_PROGRESS,
            result=summarize_result(result),
            error=None,
            finished_at=self.clock.now(),
        )
        logger.info("Job %d (%s) done", job.id, job.type)
        return done

    def _record_failure(self, job: OfficeJob, error: str) -> OfficeJob:
        if job.attempts < job.max_attempts:
            available_at = self.clock.now() + timedelta(seconds=self.backoff)
            logger.warning(
                "Job %d (%s) attempt %d/%d failed, retrying after %ss: %s",
                job.id,
                job.type,
                job.attempts,
                job.max_attempts,
                self.backoff,
                error,
            )
            return self._finish(
                job.id,
                status=JobStatus.QUEUED,
                progress=0,
                error=error,
                available_at=available_at,
            )
        logger.error(
            "Job %d (%s) failed after %d attempts: %s",
            job.id,
            job.type,
            job.attempts,
            error,
        )
        return self._finish(
            job.id,
            status=JobStatus.FAILED,
            progress=DONE_PROGRESS,
            error=error,
            finished_at=self.clock.now(),
        )

    def due_job_ids(self) -> list[int]:
        now = self.clock.now()
        with self._session() as db:
            return list(
                db.scalars(
                    select(OfficeJob.id)
                    .where(OfficeJob.status == JobStatus.QUEUED, OfficeJob.available_at <= now)
                    .order_by(OfficeJob.available_at, OfficeJob.id)
                )
            )

    async def run_pending(self) -> int:
        """Process every queued job that is due now. Returns the number of attempts run."""
        processed = 0
        for job_id in self.due_job_ids():
            if await self.process(job_id) is not None:
                processed += 1
        return processed

    async def run_forever(self, stop_event: asyncio.Event, poll_interval: float | None = None) -> None:
        """Worker loop: run due jobs, then sleep until the next poll or stop."""
        interval = settings.job_poll_interval_seconds if poll_interval is None else poll_interval
        logger.info("Job worker started (poll interval %ss)", interval)
        while not stop_event.is_set():
            await self.run_pending()
            try:
                await asyncio.wait_for(stop_event.wait(), interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Job worker stopped")


__all__ = ["JobRunner", "JobContext", "summarize_result", "to_json"]
