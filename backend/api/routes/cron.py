"""Cron entry point: one scheduler pass per call.

Called by an external cron service (or the Celery beat task's HTTP
equivalent) roughly once a minute. Overlapping calls are safe: jobs and
campaigns are claimed atomically.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from core.security import require_cron_auth
from db import database
from workflow.runner import run_scheduler_once

logger = logging.getLogger(__name__)

router = APIRouter()


@router.api_route("/cron", methods=["GET", "POST"], summary="Run one scheduler pass")
async def run_cron(request: Request, _: str = Depends(require_cron_auth)):
    """Explode due campaigns and advance due queue jobs within the time budget."""
    try:
        summary = await run_scheduler_once(
            database.AsyncSessionLocal,
            mailer_factory=getattr(request.app.state, "mailer_factory", None),
            source="http",
        )
    except Exception as e:
        logger.error(f"Cron run failed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e) or type(e).__name__})

    return {"success": True, **summary.to_dict()}
