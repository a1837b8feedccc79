"""Webhook API key model for the ingest endpoint."""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel, TenantMixin


class WebhookKey(TenantMixin, BaseModel):
    """Hashed ingest key.

    Attributes:
        name: Human-readable name (e.g. "Website signup form")
        key_hash: SHA-256 of the raw key (raw key shown once at creation)
        key_prefix: Leading characters of the raw key for identification
        is_active: Revoked keys stay for audit but stop authenticating
        last_used_at: Timestamp of the last accepted ingest call
    """

    __tablename__ = "webhook_keys"

    name: Mapped[str] = mapped_column(nullable=False)
    key_hash: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(nullable=False, default="sk_automail")
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
