"""Campaign exploder: turn one due campaign into per-contact queue jobs.

A campaign is claimed with a conditional ``scheduled -> sending`` update
committed on its own, so overlapping runs cannot both explode it. The
audience query, the job inserts and the ``completed`` flip then commit
together; on failure the campaign goes back to ``scheduled``.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from core import metrics
from core.constants import AutomationKind, AutomationStatus, ContactStatus, SegmentType
from core.utils import utcnow_naive
from db.models.automation import Automation
from db.models.contact import Contact
from db.models.tag import ContactTag, Tag
from services.queue_store import QueueStore

logger = structlog.get_logger(__name__)


def segment_tags(segment_config: Optional[dict]) -> list[str]:
    """Tag names of a ``{"type": "tag", "value": [...]}`` segment; empty for everyone."""
    segment = segment_config or {}
    if segment.get("type") != SegmentType.TAG.value:
        return []
    value = segment.get("value") or segment.get("tags") or []
    if isinstance(value, str):
        value = [value]
    return [str(v).strip() for v in value if v and str(v).strip()]


async def resolve_audience(db: AsyncSession, campaign: Automation) -> list[str]:
    """Contact ids of a campaign's audience, in a stable order.

    Active, non-deleted contacts of the campaign's tenant; with a tag
    segment, only contacts carrying at least one of the tags.
    """
    query = select(Contact.id).where(
        Contact.user_id == campaign.user_id,
        Contact.status == ContactStatus.ACTIVE.value,
        Contact.is_deleted == False,  # noqa: E712
    )

    tags = segment_tags(campaign.segment_config)
    if tags:
        tagged = (
            select(ContactTag.contact_id)
            .join(Tag, Tag.id == ContactTag.tag_id)
            .where(
                Tag.user_id == campaign.user_id,
                Tag.name.in_(tags),
                Tag.is_deleted == False,  # noqa: E712
            )
        )
        query = query.where(Contact.id.in_(tagged))

    result = await db.execute(query.order_by(Contact.created_at, Contact.id))
    return list(result.scalars().all())


class CampaignExploder:
    """Explode at most one due campaign per call."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow_naive,
        stale_after_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.stale_after_seconds = stale_after_seconds or get_settings().JOB_LEASE_SECONDS

    async def _claim(self, now: datetime) -> Optional[str]:
        """Flip one due campaign to ``sending``; return its id if this run won it.

        A campaign stuck in ``sending`` past the stale window belonged to a
        run that died before committing any jobs, so it is due again.
        """
        stale_before = now - timedelta(seconds=self.stale_after_seconds)
        due = or_(
            and_(
                Automation.status == AutomationStatus.SCHEDULED.value,
                Automation.scheduled_at <= now,
            ),
            and_(
                Automation.status == AutomationStatus.SENDING.value,
                Automation.started_at < stale_before,
            ),
        )

        async with self.session_factory() as session:
            result = await session.execute(
                select(Automation.id, Automation.status, Automation.started_at)
                .where(
                    Automation.kind == AutomationKind.CAMPAIGN.value,
                    Automation.is_deleted == False,  # noqa: E712
                    due,
                )
                .order_by(Automation.scheduled_at)
                .limit(1)
            )
            row = result.first()
            if row is None:
                return None

            campaign_id, observed_status, observed_started = row
            started_matches = (
                Automation.started_at.is_(None)
                if observed_started is None
                else Automation.started_at == observed_started
            )
            claim = await session.execute(
                update(Automation)
                .where(
                    Automation.id == campaign_id,
                    Automation.status == observed_status,
                    started_matches,
                )
                .values(status=AutomationStatus.SENDING.value, started_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if claim.rowcount != 1:
            logger.info("Campaign claimed by another run", campaign_id=campaign_id)
            return None
        if observed_status == AutomationStatus.SENDING.value:
            logger.warning("Re-exploding stale campaign", campaign_id=campaign_id)
        return campaign_id

    async def _explode(self, campaign_id: str, now: datetime) -> int:
        async with self.session_factory() as session:
            campaign = await session.get(Automation, campaign_id, populate_existing=True)
            contact_ids = await resolve_audience(session, campaign)

            queue = QueueStore(session, clock=lambda: now)
            created = await queue.enqueue_many(
                campaign, contact_ids, trigger_data={"campaign_id": campaign.id}
            )

            campaign.audience_snapshot = contact_ids
            campaign.status = AutomationStatus.COMPLETED.value
            campaign.completed_at = now
            await session.commit()
        return created

    async def _unclaim(self, campaign_id: str, now: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Automation)
                .where(
                    Automation.id == campaign_id,
                    Automation.status == AutomationStatus.SENDING.value,
                    Automation.started_at == now,
                )
                .values(status=AutomationStatus.SCHEDULED.value, started_at=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def explode_due_campaigns(self, now: Optional[datetime] = None) -> int:
        """Explode one due campaign, if any. Returns the number exploded (0 or 1)."""
        now = now or self.clock()
        try:
            campaign_id = await self._claim(now)
        except Exception as e:
            logger.error("Could not claim a due campaign", error=str(e), exc_info=True)
            return 0
        if campaign_id is None:
            return 0

        try:
            created = await self._explode(campaign_id, now)
        except Exception as e:
            logger.error(
                "Campaign explosion failed; returning it to scheduled",
                campaign_id=campaign_id,
                error=str(e),
                exc_info=True,
            )
            try:
                await self._unclaim(campaign_id, now)
            except Exception as unclaim_error:
                logger.error(
                    "Could not return campaign to scheduled",
                    campaign_id=campaign_id,
                    error=str(unclaim_error),
                    exc_info=True,
                )
            return 0

        metrics.record_campaign_exploded(created)
        logger.info("Campaign exploded", campaign_id=campaign_id, jobs_created=created)
        return 1
