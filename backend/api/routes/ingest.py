"""Public contact ingest endpoint, authenticated by a tenant webhook key.

    POST /api/ingest?key=sk_automail_...
    {"email": "ada@example.com", "first_name": "Ada", "tags": ["vip"],
     "event": "signup", "plan": "pro"}

Unknown fields land in ``custom_fields``. New tags fire ``tag_added``
automations, a new contact fires ``contact_added`` automations and an
``event`` fires matching ``event`` automations. Nothing is executed here;
the jobs are picked up by the next scheduler pass.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.contact import ContactResponse, IngestResponse
from app.dependencies import get_db
from core.api_keys import require_ingest_key
from core.constants import TriggerType
from services.contact_service import ContactService
from services.enrollment import EnrollmentService
from services.tag_store import TagStore

logger = logging.getLogger(__name__)

router = APIRouter()

STANDARD_FIELDS = {"email", "first_name", "last_name", "company", "tags", "event"}


async def read_json_object(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object or fail with 400."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="JSON body must be an object",
        )
    return body


def _text(value: Any):
    return str(value).strip() if value not in (None, "") else None


@router.post("/ingest", response_model=IngestResponse, summary="Ingest a contact")
async def ingest_contact(
    request: Request,
    key=Depends(require_ingest_key),
    db: AsyncSession = Depends(get_db),
):
    body = await read_json_object(request)

    email = body.get("email")
    if not isinstance(email, str) or not email.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")

    user_id = key.user_id
    custom_fields = {k: v for k, v in body.items() if k not in STANDARD_FIELDS}

    contact, created = await ContactService(db).upsert_contact(
        user_id,
        email,
        first_name=_text(body.get("first_name")),
        last_name=_text(body.get("last_name")),
        company=_text(body.get("company")),
        custom_fields=custom_fields,
        source="api_webhook",
    )

    enrollment = EnrollmentService(db)
    tag_store = TagStore(db)
    triggered = 0

    tags = body.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]
    for name in tags:
        if not isinstance(name, str) or not name.strip():
            continue
        if await tag_store.add_tag_to_contact(user_id, contact.id, name.strip()):
            jobs = await enrollment.enroll_for_event(
                user_id,
                contact.id,
                TriggerType.TAG_ADDED,
                tag=name.strip(),
                trigger_data={"tag": name.strip(), "source": "ingest"},
            )
            triggered += len(jobs)

    if created:
        jobs = await enrollment.enroll_for_event(
            user_id,
            contact.id,
            TriggerType.CONTACT_ADDED,
            trigger_data={"source": "ingest"},
        )
        triggered += len(jobs)

    event = _text(body.get("event"))
    if event:
        jobs = await enrollment.enroll_for_event(
            user_id,
            contact.id,
            TriggerType.EVENT,
            event_name=event,
            trigger_data=body,
        )
        triggered += len(jobs)

    logger.info(
        f"Ingested contact {contact.id} for user {user_id} "
        f"(created={created}, triggered={triggered})"
    )
    return IngestResponse(
        contact=ContactResponse.model_validate(contact),
        created=created,
        triggered=triggered,
    )
