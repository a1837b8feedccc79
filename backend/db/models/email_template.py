"""Email template model (authored in the visual builder)."""

from typing import Optional

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel, TenantMixin


class EmailTemplate(TenantMixin, BaseModel):
    """Subject and HTML body with ``{{token}}`` placeholders."""

    __tablename__ = "email_templates"

    name: Mapped[str] = mapped_column(nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
