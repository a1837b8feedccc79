"""Contact model for the Automail CRM."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import ContactStatus
from db.base import BaseModel, TenantMixin


class Contact(TenantMixin, BaseModel):
    """A person on a tenant's list.

    Attributes:
        user_id: Owning tenant
        email: Address mail is delivered to (unique per tenant)
        first_name / last_name / company: Personalization fields
        custom_fields: Free-form JSON fields, also usable as template tokens
        status: active, unsubscribed or bounced; only active contacts
            are included in campaign audiences
        source: Where the contact came from (api_webhook, csv_import, ...)
        last_contacted_at: Last successful send from the engine
    """

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("user_id", "email", name="uq_contacts_user_email"),
    )

    email: Mapped[str] = mapped_column(nullable=False, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    company: Mapped[Optional[str]] = mapped_column(nullable=True)
    custom_fields: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)
    status: Mapped[str] = mapped_column(default=ContactStatus.ACTIVE.value, index=True)
    source: Mapped[Optional[str]] = mapped_column(nullable=True)
    last_contacted_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

