"""Authenticated automation actions."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.automation import TriggerRequest, TriggerResponse
from app.dependencies import get_current_tenant, get_db
from core.constants import AutomationStatus, TriggerType
from core.security import TokenPayload
from db.models.automation import Automation
from services.base import BaseService
from services.contact_service import ContactService
from services.enrollment import EnrollmentService

logger = logging.getLogger(__name__)

router = APIRouter()

MANUALLY_TRIGGERABLE = {TriggerType.WEBHOOK.value, TriggerType.MANUAL.value}


@router.post(
    "/{automation_id}/trigger",
    response_model=TriggerResponse,
    summary="Enroll a contact manually",
)
async def trigger_automation(
    automation_id: str,
    body: TriggerRequest,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    automation = await BaseService(Automation, db).get_for_user(automation_id, current_user.sub)
    if (
        automation is None
        or automation.is_campaign
        or automation.status != AutomationStatus.ACTIVE.value
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Automation not found or inactive",
        )

    if automation.trigger_type not in MANUALLY_TRIGGERABLE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Automations triggered by '{automation.trigger_type}' cannot be run manually",
        )

    contacts = ContactService(db)
    contact = None
    if body.contact_id:
        contact = await contacts.get_for_user(body.contact_id, current_user.sub)
    elif body.email:
        contact = await contacts.get_by_email(current_user.sub, body.email)
    if contact is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Contact not found")

    job = await EnrollmentService(db).enroll_contact(
        automation,
        contact.id,
        trigger_data={"source": "manual", **body.data},
        apply_filters=False,
    )
    logger.info(f"User {current_user.sub} triggered automation {automation.id} for {contact.id}")

    return TriggerResponse(
        message="Automation triggered",
        job_id=job.id,
        automation_id=automation.id,
        contact_id=contact.id,
    )
