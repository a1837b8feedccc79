"""Automation model: trigger-driven workflows and one-shot broadcast campaigns."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import AutomationKind, AutomationStatus, TriggerType
from db.base import BaseModel, TenantMixin


class Automation(TenantMixin, BaseModel):
    """A tenant-defined workflow.

    Attributes:
        name: Display name
        kind: ``automation`` (trigger-driven) or ``campaign`` (one-shot broadcast)
        status: draft/active/paused for automations;
            draft/scheduled/sending/completed for campaigns
        trigger_type: contact_added, tag_added, event, webhook or manual
        workflow_config: ``{"trigger": {...}, "steps": [...]}`` as saved
            by the sequence builder
            (campaigns also keep their ``subject`` here)
        email_template: Campaign HTML body, used by ``send_email`` steps
            that name no template
        segment_config: Campaign audience, ``{"type": "all"|"tag", "value": [...]}``
        webhook_token: Secret for the public per-automation hook URL
        scheduled_at: When a campaign becomes due
        started_at / completed_at: Campaign explosion timestamps
        audience_snapshot: Contact ids frozen at explosion time
        total_sent: Emails delivered by the engine for this automation
    """

    __tablename__ = "automations"

    name: Mapped[str] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(default=AutomationKind.AUTOMATION.value, index=True)
    status: Mapped[str] = mapped_column(default=AutomationStatus.DRAFT.value, index=True)
    trigger_type: Mapped[str] = mapped_column(default=TriggerType.MANUAL.value, index=True)
    workflow_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)
    segment_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    webhook_token: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(nullable=True, index=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    audience_snapshot: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    email_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_sent: Mapped[int] = mapped_column(default=0)

    @property
    def is_campaign(self) -> bool:
        return self.kind == AutomationKind.CAMPAIGN.value

    def campaign_content(self) -> Optional[dict]:
        """Subject and HTML a campaign sends when its step names no template."""
        if not self.is_campaign:
            return None
        return {
            "subject": (self.workflow_config or {}).get("subject"),
            "html": self.email_template,
        }
