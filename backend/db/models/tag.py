"""Tag and contact-tag association models."""

from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, BaseModel, TenantMixin


class Tag(TenantMixin, BaseModel):
    """A tenant-scoped label. Names are unique per tenant."""

    __tablename__ = "tags"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_tags_user_name"),
    )

    name: Mapped[str] = mapped_column(nullable=False, index=True)


class ContactTag(Base):
    """Association row; the composite primary key allows one row per pair."""

    __tablename__ = "contact_tags"

    contact_id: Mapped[str] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), primary_key=True,
    )
    tag_id: Mapped[str] = mapped_column(
        ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True, index=True,
    )
