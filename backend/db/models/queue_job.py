"""Queue job model: one contact's execution state against one automation."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import JobStatus
from db.base import BaseModel


class QueueJob(BaseModel):
    """A durable per-contact cursor into a workflow.

    Created by trigger producers and the campaign exploder; mutated only by
    the scheduler loop; never deleted by the engine.

    Attributes:
        automation_id: Automation or campaign being executed (immutable)
        contact_id: Contact the workflow runs for (immutable)
        user_id: Tenant scope (immutable)
        status: pending, in_progress (leased), completed or failed
        execute_at: The job is due once ``execute_at <= now``
        payload: ``{"step_index": int, "steps": [...], ...}``; only
            ``step_index`` is required and unknown keys are preserved
        error_message: Set only on the transition to failed
        lease_token: Identifies the scheduler run holding the claim
        lease_expires_at: Claim expiry while in_progress
        attempts: Number of times a scheduler run has claimed this job
    """

    __tablename__ = "automation_queue"
    __table_args__ = (
        Index("ix_automation_queue_due", "status", "execute_at"),
    )

    automation_id: Mapped[str] = mapped_column(
        ForeignKey("automations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contact_id: Mapped[str] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(default=JobStatus.PENDING.value)
    execute_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lease_token: Mapped[Optional[str]] = mapped_column(nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    attempts: Mapped[int] = mapped_column(default=0)
