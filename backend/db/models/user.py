"""User model: the tenant that owns contacts, automations and credentials."""

from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class User(BaseModel):
    """Tenant account.

    Attributes:
        id: Unique identifier (UUID string)
        email: Account email (unique)
        full_name: Display name
        is_active: Whether the account may run automations
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
