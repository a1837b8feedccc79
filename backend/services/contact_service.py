"""Contact service: upserts from the ingest endpoint and automation webhooks."""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ContactStatus
from core.exceptions import ConflictError, ValidationError
from db.models.contact import Contact
from services.base import BaseService

logger = logging.getLogger(__name__)


def normalize_email(email: Any) -> str:
    if not isinstance(email, str):
        return ""
    return email.strip().lower()


class ContactService(BaseService[Contact]):
    """Service for tenant contacts."""

    def __init__(self, db: AsyncSession):
        super().__init__(Contact, db)

    async def get_by_email(
        self,
        user_id: str,
        email: str,
        include_deleted: bool = False,
    ) -> Optional[Contact]:
        query = select(Contact).where(
            Contact.user_id == user_id,
            Contact.email == normalize_email(email),
        )
        if not include_deleted:
            query = query.where(Contact.is_deleted == False)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def upsert_contact(
        self,
        user_id: str,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        company: Optional[str] = None,
        custom_fields: Optional[dict] = None,
        source: Optional[str] = None,
    ) -> tuple[Contact, bool]:
        """Create or update a contact by (tenant, email).

        Provided fields overwrite stored ones; ``None`` leaves a field
        untouched and custom fields are merged key by key. A soft-deleted
        contact is restored and reported as created.

        Returns:
            Tuple of (contact, created)
        """
        address = normalize_email(email)
        if not address or "@" not in address:
            raise ValidationError("A valid email is required")

        contact = await self.get_by_email(user_id, address, include_deleted=True)
        created = contact is None or contact.is_deleted

        if contact is None:
            contact = Contact(
                user_id=user_id,
                email=address,
                custom_fields={},
                status=ContactStatus.ACTIVE.value,
                source=source,
            )
            self.db.add(contact)
        elif contact.is_deleted:
            contact.restore()
            contact.status = ContactStatus.ACTIVE.value

        for field, value in (
            ("first_name", first_name),
            ("last_name", last_name),
            ("company", company),
        ):
            if value is not None:
                setattr(contact, field, value)

        if custom_fields:
            contact.custom_fields = {**(contact.custom_fields or {}), **custom_fields}

        try:
            await self.db.flush()
            await self.db.refresh(contact)
        except IntegrityError as e:
            logger.warning(f"Concurrent upsert of contact {address} for user {user_id}: {e}")
            raise ConflictError("Contact was modified concurrently, retry the request") from e

        if created:
            logger.info(f"Contact {contact.id} created for user {user_id} (source={source})")
        return contact, created
