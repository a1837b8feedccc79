"""Sender identity model."""

from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel, TenantMixin


class SenderIdentity(TenantMixin, BaseModel):
    """A From identity a tenant may send as."""

    __tablename__ = "sender_identities"

    name: Mapped[str] = mapped_column(nullable=False)
    email: Mapped[str] = mapped_column(nullable=False)
    is_verified: Mapped[bool] = mapped_column(default=False)

    @property
    def from_header(self) -> str:
        return f"{self.name} <{self.email}>"
