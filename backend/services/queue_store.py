"""Queue store: durable per-contact job rows and their lease protocol.

A job is claimed by a conditional UPDATE that flips it to ``in_progress``
and stamps a lease token; every later write for that claim is conditional
on the same token. Two overlapping scheduler runs therefore never process
the same job, and a run that dies mid-batch only delays its jobs until the
lease expires.

The store never commits; callers own the transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core.constants import JobStatus
from core.utils import utcnow_naive
from db.models.automation import Automation
from db.models.contact import Contact
from db.models.queue_job import QueueJob
from workflow.definition import raw_steps_of
from workflow.effects import ContactSnapshot, InlineContent, JobContext
from workflow.interpreter import (
    Advance,
    Completed,
    Decision,
    Failed,
    JobState,
    Pending,
    job_state_from_row,
)

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class DueJob:
    """A claimed job with everything needed to advance it one step.

    Attributes:
        job_id: Queue row id
        lease_token: Token of the claim that produced this snapshot
        state: Always ``Pending`` for a freshly claimed job
        payload: Row payload as read at claim time
        raw_steps: Step snapshot from the payload, or the automation's
            live steps for rows created without one
        automation_exists: False when the automation was deleted
        context: Tenant, automation and contact for side effects
    """

    job_id: str
    lease_token: str
    automation_id: str
    state: JobState
    payload: dict
    raw_steps: list
    automation_exists: bool
    context: JobContext

    @property
    def step_index(self) -> int:
        return self.state.step_index if isinstance(self.state, Pending) else 0


class QueueStore:
    """Reads and writes ``automation_queue`` rows."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow_naive,
        lease_seconds: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.lease_seconds = lease_seconds or get_settings().JOB_LEASE_SECONDS

    # ─── Producers ─────────────────────────────────────────

    @staticmethod
    def build_payload(automation: Automation, trigger_data: Optional[dict] = None) -> dict:
        """Initial payload: cursor at 0 plus a snapshot of the step list.

        Campaign jobs also snapshot the campaign's subject and HTML.
        """
        payload: dict[str, Any] = {
            "step_index": 0,
            "steps": raw_steps_of(automation.workflow_config),
        }
        content = automation.campaign_content()
        if content is not None:
            payload["content"] = content
        if trigger_data:
            payload["trigger_data"] = trigger_data
        return payload

    async def enqueue(
        self,
        automation: Automation,
        contact_id: str,
        trigger_data: Optional[dict] = None,
    ) -> QueueJob:
        """Insert one pending job, due immediately."""
        job = QueueJob(
            automation_id=automation.id,
            contact_id=contact_id,
            user_id=automation.user_id,
            status=JobStatus.PENDING.value,
            execute_at=self.clock(),
            payload=self.build_payload(automation, trigger_data),
            attempts=0,
        )
        self.db.add(job)
        await self.db.flush()
        logger.info(f"Enqueued job {job.id} (automation={automation.id}, contact={contact_id})")
        return job

    async def enqueue_many(
        self,
        automation: Automation,
        contact_ids: Iterable[str],
        trigger_data: Optional[dict] = None,
    ) -> int:
        """Bulk-insert one pending job per contact. Returns the row count."""
        now = self.clock()
        payload = self.build_payload(automation, trigger_data)
        rows = [
            {
                "id": str(uuid4()),
                "automation_id": automation.id,
                "contact_id": contact_id,
                "user_id": automation.user_id,
                "status": JobStatus.PENDING.value,
                "execute_at": now,
                "payload": dict(payload),
                "attempts": 0,
                "is_deleted": False,
            }
            for contact_id in contact_ids
        ]
        if not rows:
            return 0
        await self.db.execute(insert(QueueJob.__table__), rows)
        return len(rows)

    async def has_job_for(self, automation_id: str, contact_id: str) -> bool:
        """Whether the contact was ever enrolled in the automation."""
        result = await self.db.execute(
            select(QueueJob.id)
            .where(QueueJob.automation_id == automation_id, QueueJob.contact_id == contact_id)
            .limit(1)
        )
        return result.first() is not None

    # ─── Claim ─────────────────────────────────────────────

    async def fetch_due_batch(self, limit: int, now: Optional[datetime] = None) -> list[DueJob]:
        """Claim up to ``limit`` due jobs, oldest ``execute_at`` first.

        Due means pending with ``execute_at <= now``, or in_progress with an
        expired lease (its previous run died). Jobs another run claims first
        are skipped.
        """
        now = now or self.clock()
        candidates = await self.db.execute(
            select(QueueJob.id, QueueJob.status, QueueJob.lease_token)
            .where(
                or_(
                    and_(
                        QueueJob.status == JobStatus.PENDING.value,
                        QueueJob.execute_at <= now,
                    ),
                    and_(
                        QueueJob.status == JobStatus.IN_PROGRESS.value,
                        QueueJob.lease_expires_at < now,
                    ),
                )
            )
            .order_by(QueueJob.execute_at)
            .limit(limit)
        )

        token = uuid4().hex
        lease_until = now + timedelta(seconds=self.lease_seconds)
        claimed: list[str] = []

        for job_id, observed_status, observed_token in candidates.all():
            if observed_status == JobStatus.IN_PROGRESS.value:
                logger.warning(f"Reclaiming job {job_id} after lease expiry")
            token_matches = (
                QueueJob.lease_token.is_(None)
                if observed_token is None
                else QueueJob.lease_token == observed_token
            )
            result = await self.db.execute(
                update(QueueJob)
                .where(
                    QueueJob.id == job_id,
                    QueueJob.status == observed_status,
                    token_matches,
                )
                .values(
                    status=JobStatus.IN_PROGRESS.value,
                    lease_token=token,
                    lease_expires_at=lease_until,
                    attempts=QueueJob.attempts + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(job_id)
            else:
                logger.debug(f"Job {job_id} was claimed by another run")

        if not claimed:
            return []

        rows = await self.db.execute(
            select(QueueJob, Automation, Contact)
            .outerjoin(Automation, and_(
                Automation.id == QueueJob.automation_id,
                Automation.is_deleted == False,  # noqa: E712
            ))
            .outerjoin(Contact, and_(
                Contact.id == QueueJob.contact_id,
                Contact.is_deleted == False,  # noqa: E712
            ))
            .where(QueueJob.id.in_(claimed))
            .order_by(QueueJob.execute_at)
            .execution_options(populate_existing=True)
        )
        return [self._to_due_job(job, automation, contact, token) for job, automation, contact in rows.all()]

    def _to_due_job(
        self,
        job: QueueJob,
        automation: Optional[Automation],
        contact: Optional[Contact],
        token: str,
    ) -> DueJob:
        payload = dict(job.payload or {})
        if isinstance(payload.get("steps"), list):
            raw_steps = payload["steps"]
        else:
            raw_steps = raw_steps_of(automation.workflow_config) if automation else []
        if isinstance(payload.get("content"), dict):
            content = InlineContent.from_dict(payload["content"])
        else:
            content = InlineContent.from_dict(automation.campaign_content()) if automation else None

        return DueJob(
            job_id=job.id,
            lease_token=token,
            automation_id=job.automation_id,
            state=job_state_from_row(JobStatus.IN_PROGRESS.value, payload),
            payload=payload,
            raw_steps=raw_steps,
            automation_exists=automation is not None,
            context=JobContext(
                job_id=job.id,
                user_id=job.user_id,
                automation_id=job.automation_id,
                contact=ContactSnapshot.from_model(contact) if contact else None,
                content=content,
            ),
        )

    # ─── Transitions ───────────────────────────────────────

    async def _write_claimed(self, job: DueJob, values: dict) -> bool:
        """Write ``values`` only if ``job``'s claim is still held."""
        values = {**values, "lease_token": None, "lease_expires_at": None}
        result = await self.db.execute(
            update(QueueJob)
            .where(
                QueueJob.id == job.job_id,
                QueueJob.status == JobStatus.IN_PROGRESS.value,
                QueueJob.lease_token == job.lease_token,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def apply_transition(self, job: DueJob, decision: Decision) -> bool:
        """Persist an interpreter decision. Returns False if the lease was lost."""
        if isinstance(decision, Advance):
            values = Pending(decision.next_index).to_columns(job.payload)
            values["execute_at"] = decision.next_execute_at
        else:
            values = Completed().to_columns(job.payload)
        return await self._write_claimed(job, values)

    async def mark_failed(self, job: DueJob, error: str) -> bool:
        """Move a job to failed, recording which step it died on."""
        message = f"Step {job.step_index}: {error}"[:MAX_ERROR_LENGTH]
        return await self._write_claimed(job, Failed(message).to_columns(job.payload))

    async def release(self, job: DueJob) -> bool:
        """Give back a claimed job untouched so the next run picks it up."""
        return await self._write_claimed(job, {"status": JobStatus.PENDING.value})

    async def record_delivery(self, job: DueJob, sent_at: datetime) -> None:
        """Bump the automation's send counter and stamp the contact."""
        await self.db.execute(
            update(Automation)
            .where(Automation.id == job.automation_id)
            .values(total_sent=Automation.total_sent + 1)
            .execution_options(synchronize_session=False)
        )
        if job.context.contact is not None:
            await self.db.execute(
                update(Contact)
                .where(Contact.id == job.context.contact.id)
                .values(last_contacted_at=sent_at)
                .execution_options(synchronize_session=False)
            )

    # ─── Reporting ─────────────────────────────────────────

    async def stats(self, user_id: Optional[str] = None) -> dict[str, int]:
        """Job counts by status."""
        query = select(QueueJob.status, func.count()).group_by(QueueJob.status)
        if user_id:
            query = query.where(QueueJob.user_id == user_id)
        result = await self.db.execute(query)
        counts = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            counts[status] = count
        return counts
