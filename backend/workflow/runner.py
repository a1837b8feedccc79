"""Wiring for a single scheduler invocation.

Both entry points (the ``/api/cron`` route and the Celery beat task) call
``run_scheduler_once``; they differ only in which session factory they pass.
"""

import time
from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from core.logging_config import bind_run_context, clear_run_context
from core.utils import utcnow_naive
from integrations.mailer import MailerFactory, build_mailer
from services.campaign_exploder import CampaignExploder
from services.content_resolver import ContentResolver
from services.credential_store import CredentialStore
from services.enrollment import EnrollmentService
from services.queue_store import QueueStore
from services.tag_store import TagStore
from workflow.effects import StepExecutor
from workflow.scheduler import EngineServices, RunSummary, SchedulerLoop, ServicesFactory

logger = structlog.get_logger(__name__)


def build_services_factory(
    mailer_factory: Optional[MailerFactory] = None,
    clock: Callable[[], datetime] = utcnow_naive,
) -> ServicesFactory:
    """Return a factory binding the engine's collaborators to one session."""
    settings = get_settings()
    mailer_factory = mailer_factory or build_mailer

    def factory(session: AsyncSession) -> EngineServices:
        enrollment = EnrollmentService(session, clock=clock)
        executor = StepExecutor(
            mailer_factory=mailer_factory,
            tag_store=TagStore(session),
            credential_store=CredentialStore(session),
            content_resolver=ContentResolver(session),
            default_sender=settings.DEFAULT_SENDER,
            provider=settings.EMAIL_PROVIDER,
            on_tag_added=enrollment.on_tag_added,
        )
        return EngineServices(
            queue=QueueStore(session, clock=clock, lease_seconds=settings.JOB_LEASE_SECONDS),
            executor=executor,
        )

    return factory


async def run_scheduler_once(
    session_factory: async_sessionmaker,
    mailer_factory: Optional[MailerFactory] = None,
    deadline_budget: Optional[float] = None,
    batch_size: Optional[int] = None,
    clock: Callable[[], datetime] = utcnow_naive,
    monotonic: Callable[[], float] = time.monotonic,
    source: str = "cron",
) -> RunSummary:
    """Run one scheduler pass and return its summary."""
    settings = get_settings()
    bind_run_context(source)
    try:
        loop = SchedulerLoop(
            session_factory=session_factory,
            services_factory=build_services_factory(mailer_factory, clock),
            exploder=CampaignExploder(
                session_factory,
                clock=clock,
                stale_after_seconds=settings.JOB_LEASE_SECONDS,
            ),
            clock=clock,
            monotonic=monotonic,
        )
        logger.info("Scheduler pass starting")
        return await loop.run(
            deadline_budget=(
                deadline_budget
                if deadline_budget is not None
                else settings.SCHEDULER_TIME_BUDGET_SECONDS
            ),
            batch_size=batch_size or settings.SCHEDULER_BATCH_SIZE,
        )
    finally:
        clear_run_context()
