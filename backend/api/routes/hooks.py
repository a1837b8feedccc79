"""Per-automation webhook: enroll a contact in one automation.

    POST /api/hooks/{automation_id}?token=<webhook_token>
    {"email": "ada@example.com", "first_name": "Ada"}
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.routes.ingest import read_json_object
from api.schemas.contact import HookResponse
from app.dependencies import get_db
from core.constants import AutomationStatus
from db.models.automation import Automation
from services.contact_service import ContactService
from services.enrollment import EnrollmentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/hooks/{automation_id}", response_model=HookResponse, summary="Automation webhook")
async def automation_webhook(
    automation_id: str,
    request: Request,
    token: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Automation).where(
            Automation.id == automation_id,
            Automation.is_deleted == False,  # noqa: E712
        )
    )
    automation = result.scalar_one_or_none()

    if (
        automation is None
        or not token
        or not automation.webhook_token
        or not secrets.compare_digest(token, automation.webhook_token)
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook token",
        )

    if automation.status != AutomationStatus.ACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Automation is not active",
        )

    body = await read_json_object(request)
    email = body.get("email")
    if not isinstance(email, str) or not email.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")

    contact, _ = await ContactService(db).upsert_contact(
        automation.user_id,
        email,
        first_name=body.get("first_name") or None,
        last_name=body.get("last_name") or None,
        source="automation_webhook",
    )

    job = await EnrollmentService(db).enroll_contact(
        automation,
        contact.id,
        trigger_data=body,
    )
    if job is None:
        logger.info(f"Webhook for automation {automation.id}: contact {contact.id} filtered out")

    return HookResponse(
        contact_id=contact.id,
        queued=job is not None,
        job_id=job.id if job else None,
    )
