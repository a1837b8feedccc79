"""Enrollment: turn trigger occurrences into queue jobs.

Producers only insert pending rows due now; they never run steps. The
scheduler picks new jobs up on its next pass.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import AutomationKind, AutomationStatus, TriggerScope, TriggerType
from core.utils import utcnow_naive
from db.models.automation import Automation
from db.models.queue_job import QueueJob
from services.queue_store import QueueStore
from services.tag_store import TagStore
from workflow.definition import TriggerSpec, parse_trigger

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Match trigger occurrences against a tenant's active automations."""

    def __init__(self, db: AsyncSession, clock=utcnow_naive):
        self.db = db
        self.queue = QueueStore(db, clock=clock)
        self.tags = TagStore(db)

    async def _active_automations(self, user_id: str, kind: TriggerType) -> list[Automation]:
        result = await self.db.execute(
            select(Automation)
            .where(
                Automation.user_id == user_id,
                Automation.kind == AutomationKind.AUTOMATION.value,
                Automation.status == AutomationStatus.ACTIVE.value,
                Automation.trigger_type == kind.value,
                Automation.is_deleted == False,  # noqa: E712
            )
            .order_by(Automation.created_at)
        )
        return list(result.scalars().all())

    async def is_eligible(
        self,
        automation: Automation,
        trigger: TriggerSpec,
        contact_id: str,
    ) -> bool:
        """Apply the trigger's contact filters (required tags, scope)."""
        if trigger.required_tags and not await self.tags.contact_has_tags(
            contact_id, trigger.required_tags
        ):
            logger.debug(
                f"Contact {contact_id} lacks required tags {list(trigger.required_tags)} "
                f"for automation {automation.id}"
            )
            return False

        if trigger.scope == TriggerScope.ONCE_PER_CONTACT and await self.queue.has_job_for(
            automation.id, contact_id
        ):
            logger.debug(f"Contact {contact_id} already enrolled in automation {automation.id}")
            return False

        return True

    async def enroll_for_event(
        self,
        user_id: str,
        contact_id: str,
        kind: TriggerType,
        event_name: Optional[str] = None,
        tag: Optional[str] = None,
        trigger_data: Optional[dict] = None,
    ) -> list[QueueJob]:
        """Enroll a contact in every matching automation of the tenant."""
        jobs = []
        for automation in await self._active_automations(user_id, kind):
            trigger = parse_trigger(
                (automation.workflow_config or {}).get("trigger"),
                automation.trigger_type,
            )
            if not trigger.matches(kind, event_name=event_name, tag=tag):
                continue
            if not await self.is_eligible(automation, trigger, contact_id):
                continue
            jobs.append(await self.queue.enqueue(automation, contact_id, trigger_data))

        if jobs:
            logger.info(
                f"Trigger {kind.value} enrolled contact {contact_id} "
                f"in {len(jobs)} automation(s)"
            )
        return jobs

    async def enroll_contact(
        self,
        automation: Automation,
        contact_id: str,
        trigger_data: Optional[dict] = None,
        apply_filters: bool = True,
    ) -> Optional[QueueJob]:
        """Enroll a contact in one specific automation (webhook or manual).

        Returns None when the trigger's filters reject the contact.
        """
        if apply_filters:
            trigger = parse_trigger(
                (automation.workflow_config or {}).get("trigger"),
                automation.trigger_type,
            )
            if not await self.is_eligible(automation, trigger, contact_id):
                return None
        return await self.queue.enqueue(automation, contact_id, trigger_data)

    async def on_tag_added(self, user_id: str, contact_id: str, tag_name: str) -> int:
        """Hook for the step executor: a workflow attached ``tag_name``."""
        jobs = await self.enroll_for_event(
            user_id,
            contact_id,
            TriggerType.TAG_ADDED,
            tag=tag_name,
            trigger_data={"tag": tag_name, "source": "workflow"},
        )
        return len(jobs)
