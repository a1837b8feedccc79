"""Tenant-scoped lookups for the content a send_email step references."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from db.models.email_template import EmailTemplate
from db.models.sender_identity import SenderIdentity
from services.base import BaseService


class ContentResolver:
    """Resolve templates and sender identities for one tenant at a time."""

    def __init__(self, db: AsyncSession):
        self.templates = BaseService(EmailTemplate, db)
        self.senders = BaseService(SenderIdentity, db)

    async def get_template(self, user_id: str, template_id: str) -> Optional[EmailTemplate]:
        return await self.templates.get_for_user(template_id, user_id)

    async def get_sender(self, user_id: str, sender_id: str) -> Optional[SenderIdentity]:
        return await self.senders.get_for_user(sender_id, user_id)
