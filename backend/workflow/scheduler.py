"""Scheduler loop: one bounded pass over due campaigns and queue jobs.

Each invocation:

1. Explodes at most one due campaign.
2. Repeatedly claims a batch of due jobs and advances each one step,
   until a claim comes back empty or the time budget is spent.

Every job is handled in its own session and transaction. A failure is
recorded on that job and the loop moves on; nothing a single job does can
stop the rest of the batch. When the budget runs out mid-batch the
unprocessed remainder is released back to ``pending`` untouched.
"""

import time
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core import metrics
from core.exceptions import JobFatalError, MissingReferenceError
from core.utils import utcnow_naive
from services.campaign_exploder import CampaignExploder
from services.queue_store import DueJob, QueueStore
from workflow.definition import parse_steps
from workflow.effects import StepExecutor
from workflow.interpreter import Advance, Complete, decide

logger = structlog.get_logger(__name__)


class StopReason(str, Enum):
    DRAINED = "drained"
    TIME_BUDGET = "time_budget"


class JobOutcome(str, Enum):
    ADVANCED = "advanced"
    COMPLETED = "completed"
    FAILED = "failed"
    LEASE_LOST = "lease_lost"


class LeaseLostError(Exception):
    """Another run reclaimed the job before this run persisted its transition."""


@dataclass
class RunSummary:
    """What one scheduler invocation did.

    ``processed`` counts jobs that advanced or completed; failures are
    counted separately.
    """

    processed: int = 0
    completed: int = 0
    failed: int = 0
    released: int = 0
    exploded: int = 0
    batches: int = 0
    stopped_reason: str = StopReason.DRAINED.value
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class EngineServices:
    """Per-transaction collaborators for advancing one job."""

    queue: QueueStore
    executor: StepExecutor


ServicesFactory = Callable[[AsyncSession], EngineServices]


class SchedulerLoop:
    """Drive due jobs forward inside a wall-clock budget.

    Args:
        session_factory: Opens a fresh session per unit of work
        services_factory: Binds queue store and executor to a session
        exploder: Campaign exploder run once at the start of each pass
        clock: Naive-UTC "now" used for due checks and new ``execute_at``
        monotonic: Time source for the budget
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        services_factory: ServicesFactory,
        exploder: CampaignExploder,
        clock: Callable[[], datetime] = utcnow_naive,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.services_factory = services_factory
        self.exploder = exploder
        self.clock = clock
        self.monotonic = monotonic

    async def run(self, deadline_budget: float, batch_size: int) -> RunSummary:
        started = self.monotonic()
        summary = RunSummary()

        def over_budget() -> bool:
            return self.monotonic() - started > deadline_budget

        summary.exploded = await self.exploder.explode_due_campaigns(self.clock())

        while True:
            if over_budget():
                summary.stopped_reason = StopReason.TIME_BUDGET.value
                break

            batch = await self.claim_batch(batch_size)
            if not batch:
                break
            summary.batches += 1

            for position, job in enumerate(batch):
                if over_budget():
                    summary.released += await self.release(batch[position:])
                    summary.stopped_reason = StopReason.TIME_BUDGET.value
                    break

                outcome = await self.process_job(job)
                metrics.record_job_outcome(outcome.value)
                if outcome == JobOutcome.FAILED:
                    summary.failed += 1
                elif outcome in (JobOutcome.ADVANCED, JobOutcome.COMPLETED):
                    summary.processed += 1
                    if outcome == JobOutcome.COMPLETED:
                        summary.completed += 1

            if summary.stopped_reason == StopReason.TIME_BUDGET.value:
                break

        summary.duration_seconds = round(self.monotonic() - started, 3)
        metrics.record_scheduler_run(summary.stopped_reason, summary.duration_seconds)
        logger.info("Scheduler pass finished", **summary.to_dict())
        return summary

    async def claim_batch(self, batch_size: int) -> list[DueJob]:
        async with self.session_factory() as session:
            batch = await self.services_factory(session).queue.fetch_due_batch(
                batch_size, self.clock()
            )
            await session.commit()
        return batch

    async def release(self, jobs: list[DueJob]) -> int:
        released = 0
        async with self.session_factory() as session:
            queue = self.services_factory(session).queue
            for job in jobs:
                if await queue.release(job):
                    released += 1
            await session.commit()
        logger.info("Released unprocessed jobs", count=released)
        return released

    async def process_job(self, job: DueJob) -> JobOutcome:
        """Advance one claimed job by exactly one step."""
        log = logger.bind(
            job_id=job.job_id,
            automation_id=job.automation_id,
            step_index=job.step_index,
        )

        try:
            async with self.session_factory() as session:
                outcome = await self._advance(job, self.services_factory(session))
                await session.commit()
            return outcome
        except LeaseLostError:
            log.warning("Lease lost; transition discarded")
            return JobOutcome.LEASE_LOST
        except Exception as e:
            error = e

        if isinstance(error, JobFatalError):
            log.warning("Job failed", error_kind=error.kind, error=error.message)
        else:
            log.error("Job failed with unexpected error", error=str(error), exc_info=error)

        try:
            async with self.session_factory() as session:
                await self.services_factory(session).queue.mark_failed(
                    job, str(error) or type(error).__name__
                )
                await session.commit()
        except Exception as e:
            log.error("Could not record job failure", error=str(e), exc_info=True)
        return JobOutcome.FAILED

    async def _advance(self, job: DueJob, services: EngineServices) -> JobOutcome:
        if not job.automation_exists:
            raise MissingReferenceError(f"Automation {job.automation_id} no longer exists")

        now = self.clock()
        steps = parse_steps(job.raw_steps)
        decision = decide(steps, job.state, now)

        if isinstance(decision, Advance) and decision.side_effect is not None:
            result = await services.executor.execute(decision.side_effect, job.context)
            if result.kind == "send_email":
                await services.queue.record_delivery(job, now)

        if not await services.queue.apply_transition(job, decision):
            raise LeaseLostError(job.job_id)

        if isinstance(decision, Complete):
            logger.info("Job completed", job_id=job.job_id)
            return JobOutcome.COMPLETED

        logger.debug(
            "Job advanced",
            job_id=job.job_id,
            step_index=decision.next_index,
            execute_at=decision.next_execute_at.isoformat(),
        )
        return JobOutcome.ADVANCED
