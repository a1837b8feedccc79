"""Celery task that runs one scheduler pass.

Runs every minute via Celery Beat. Like the HTTP cron route it calls
``workflow.runner.run_scheduler_once``; the only difference is a
short-lived engine per run (``db.worker_session``) so asyncpg connections
never cross event loops.
"""

import asyncio
import logging

from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.automation_cron.process_automation_queue",
    bind=True,
    max_retries=0,
    queue="scheduler",
)
def process_automation_queue(self):
    """Explode due campaigns and advance due queue jobs."""
    logger.info("[automation-cron] Starting scheduler pass...")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(_run_once())
        logger.info(f"[automation-cron] Done: {result}")
        return result
    except Exception as exc:
        # The next beat tick is the retry; jobs claimed by this pass are
        # reclaimed once their lease expires.
        logger.error(f"[automation-cron] Scheduler pass failed: {exc}", exc_info=True)
        raise
    finally:
        loop.close()


async def _run_once() -> dict:
    from db.worker_session import worker_session_factory
    from workflow.runner import run_scheduler_once

    async with worker_session_factory() as session_factory:
        summary = await run_scheduler_once(session_factory, source="celery")
    return summary.to_dict()
