"""Encrypted provider credential model (BYOK vault)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel, TenantMixin


class VaultKey(TenantMixin, BaseModel):
    """A tenant's API key for a third-party provider.

    Attributes:
        provider: Provider code (resend, openai)
        key_name: Human-readable label
        encrypted_value: Fernet token of the raw key; never stored in clear
        metadata_: Provider-specific extras
        is_active: Inactive keys are ignored by the engine
        last_used_at: Last time the engine decrypted this key
    """

    __tablename__ = "vault_keys"

    provider: Mapped[str] = mapped_column(nullable=False, index=True)
    key_name: Mapped[str] = mapped_column(nullable=False, default="default")
    encrypted_value: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
