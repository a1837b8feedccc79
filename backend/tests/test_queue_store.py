"""Tests for queue job insertion, claiming, leases and transitions."""

from datetime import timedelta

import pytest

from db.models.queue_job import QueueJob
from services.queue_store import QueueStore
from conftest import reload
from workflow.interpreter import Advance, Complete, Pending

STEPS = [
    {"type": "delay", "config": {"amount": 1, "unit": "hours"}},
    {"type": "send_email", "config": {"template_id": "t1"}},
]


@pytest.mark.integration
class TestEnqueue:

    async def test_insertion_contract(self, db_session, clock, make_automation, contact):
        automation = await make_automation(STEPS)
        job = await QueueStore(db_session, clock=clock).enqueue(
            automation, contact.id, trigger_data={"source": "test"}
        )

        assert job.status == "pending"
        assert job.execute_at == clock.now
        assert job.user_id == automation.user_id
        assert job.payload == {"step_index": 0, "steps": STEPS, "trigger_data": {"source": "test"}}
        assert job.attempts == 0

    async def test_campaign_jobs_snapshot_content(self, db_session, clock, make_campaign, contact):
        campaign = await make_campaign(STEPS, scheduled_at=clock.now, email_template="<p>Hi</p>")
        campaign.workflow_config = {**campaign.workflow_config, "subject": "Launch"}
        await db_session.commit()

        store = QueueStore(db_session, clock=clock)
        job = await store.enqueue(campaign, contact.id)
        await db_session.commit()
        assert job.payload["content"] == {"subject": "Launch", "html": "<p>Hi</p>"}

        campaign.email_template = "<p>Edited</p>"
        await db_session.commit()
        [due] = await store.fetch_due_batch(10)
        assert due.context.content.subject == "Launch"
        assert due.context.content.html == "<p>Hi</p>"

    async def test_automation_jobs_carry_no_content(self, db_session, clock, make_automation, contact, enqueue):
        await enqueue(await make_automation(STEPS), contact.id)
        [due] = await QueueStore(db_session, clock=clock).fetch_due_batch(10)
        assert "content" not in due.payload
        assert due.context.content is None

    async def test_enqueue_many(self, db_session, clock, make_automation, make_contact):
        automation = await make_automation(STEPS)
        contacts = [await make_contact() for _ in range(3)]
        store = QueueStore(db_session, clock=clock)

        assert await store.enqueue_many(automation, [c.id for c in contacts]) == 3
        assert await store.enqueue_many(automation, []) == 0
        assert (await store.stats())["pending"] == 3


@pytest.mark.integration
class TestClaim:

    async def test_claims_only_due_jobs_in_order(self, db_session, clock, make_automation, make_contact, enqueue):
        automation = await make_automation(STEPS)
        first = await enqueue(automation, (await make_contact()).id)
        clock.advance(minutes=1)
        second = await enqueue(automation, (await make_contact()).id)
        clock.advance(minutes=1)
        future = await enqueue(automation, (await make_contact()).id)
        future.execute_at = clock.now + timedelta(hours=1)
        await db_session.commit()

        store = QueueStore(db_session, clock=clock)
        batch = await store.fetch_due_batch(10)

        assert [j.job_id for j in batch] == [first.id, second.id]
        assert all(j.state == Pending(0) for j in batch)
        assert batch[0].raw_steps == STEPS

        claimed = await reload(db_session, QueueJob, first.id)
        assert claimed.status == "in_progress"
        assert claimed.attempts == 1
        assert claimed.lease_token == batch[0].lease_token
        assert claimed.lease_expires_at == clock.now + timedelta(seconds=store.lease_seconds)

    async def test_claimed_jobs_are_not_claimed_twice(self, db_session, clock, make_automation, contact, enqueue):
        automation = await make_automation(STEPS)
        await enqueue(automation, contact.id)
        store = QueueStore(db_session, clock=clock)

        assert len(await store.fetch_due_batch(10)) == 1
        assert await store.fetch_due_batch(10) == []

    async def test_limit(self, db_session, clock, make_automation, make_contact, enqueue):
        automation = await make_automation(STEPS)
        for _ in range(5):
            await enqueue(automation, (await make_contact()).id)
        assert len(await QueueStore(db_session, clock=clock).fetch_due_batch(2)) == 2

    async def test_expired_lease_is_reclaimed(self, db_session, clock, make_automation, contact, enqueue):
        automation = await make_automation(STEPS)
        job = await enqueue(automation, contact.id)
        store = QueueStore(db_session, clock=clock, lease_seconds=60)

        [stale] = await store.fetch_due_batch(10)
        clock.advance(seconds=61)
        [fresh] = await store.fetch_due_batch(10)

        assert fresh.job_id == job.id
        assert fresh.lease_token != stale.lease_token
        assert (await reload(db_session, QueueJob, job.id)).attempts == 2

        # The dead run's late write is rejected
        decision = Advance(next_index=1, next_execute_at=clock.now)
        assert await store.apply_transition(stale, decision) is False
        assert await store.apply_transition(fresh, decision) is True

    async def test_live_lease_is_not_reclaimed(self, db_session, clock, make_automation, contact, enqueue):
        automation = await make_automation(STEPS)
        await enqueue(automation, contact.id)
        store = QueueStore(db_session, clock=clock, lease_seconds=60)

        await store.fetch_due_batch(10)
        clock.advance(seconds=59)
        assert await store.fetch_due_batch(10) == []

    async def test_step_snapshot_survives_workflow_edits(self, db_session, clock, make_automation, contact, enqueue):
        automation = await make_automation(STEPS)
        await enqueue(automation, contact.id)
        automation.workflow_config = {"steps": [{"type": "add_tag", "config": {"tag": "x"}}]}
        await db_session.commit()

        [due] = await QueueStore(db_session, clock=clock).fetch_due_batch(10)
        assert due.raw_steps == STEPS

    async def test_rows_without_snapshot_use_live_steps(self, db_session, clock, make_automation, contact):
        automation = await make_automation(STEPS)
        db_session.add(QueueJob(
            automation_id=automation.id,
            contact_id=contact.id,
            user_id=automation.user_id,
            status="pending",
            execute_at=clock.now,
            payload={"step_index": 1},
        ))
        await db_session.commit()

        [due] = await QueueStore(db_session, clock=clock).fetch_due_batch(10)
        assert due.raw_steps == STEPS
        assert due.step_index == 1
        assert due.context.contact.email == contact.email

    async def test_garbage_cursor_fails_as_first_step(self, db_session, clock, make_automation, contact):
        automation = await make_automation(STEPS)
        job = QueueJob(
            automation_id=automation.id,
            contact_id=contact.id,
            user_id=automation.user_id,
            status="pending",
            execute_at=clock.now,
            payload={"step_index": "not-a-number", "steps": STEPS},
        )
        db_session.add(job)
        await db_session.commit()

        store = QueueStore(db_session, clock=clock)
        [due] = await store.fetch_due_batch(10)
        assert due.step_index == 0
        assert await store.mark_failed(due, "boom")
        await db_session.commit()
        assert (await reload(db_session, QueueJob, job.id)).error_message == "Step 0: boom"


@pytest.mark.integration
class TestTransitions:

    async def _claim_one(self, db_session, clock, make_automation, contact, enqueue):
        automation = await make_automation(STEPS)
        job = await enqueue(automation, contact.id, trigger_data={"keep": "me"})
        store = QueueStore(db_session, clock=clock)
        [due] = await store.fetch_due_batch(10)
        return store, due, job

    async def test_advance_preserves_payload(self, db_session, clock, make_automation, contact, enqueue):
        store, due, job = await self._claim_one(db_session, clock, make_automation, contact, enqueue)
        later = clock.now + timedelta(hours=1)

        assert await store.apply_transition(due, Advance(next_index=1, next_execute_at=later))

        row = await reload(db_session, QueueJob, job.id)
        assert row.status == "pending"
        assert row.execute_at == later
        assert row.payload == {"step_index": 1, "steps": STEPS, "trigger_data": {"keep": "me"}}
        assert row.lease_token is None
        assert row.lease_expires_at is None

    async def test_complete(self, db_session, clock, make_automation, contact, enqueue):
        store, due, job = await self._claim_one(db_session, clock, make_automation, contact, enqueue)
        assert await store.apply_transition(due, Complete())

        row = await reload(db_session, QueueJob, job.id)
        assert row.status == "completed"
        assert row.error_message is None

    async def test_mark_failed_prefixes_step(self, db_session, clock, make_automation, contact, enqueue):
        store, due, job = await self._claim_one(db_session, clock, make_automation, contact, enqueue)
        assert await store.mark_failed(due, "Template t1 not found")

        row = await reload(db_session, QueueJob, job.id)
        assert row.status == "failed"
        assert row.error_message == "Step 0: Template t1 not found"
        assert row.payload["step_index"] == 0

    async def test_release_keeps_cursor_and_due_time(self, db_session, clock, make_automation, contact, enqueue):
        store, due, job = await self._claim_one(db_session, clock, make_automation, contact, enqueue)
        assert await store.release(due)

        row = await reload(db_session, QueueJob, job.id)
        assert row.status == "pending"
        assert row.execute_at == job.execute_at
        assert row.payload["step_index"] == 0
        assert len(await store.fetch_due_batch(10)) == 1

    async def test_stats(self, db_session, clock, make_automation, contact, enqueue):
        store, due, _ = await self._claim_one(db_session, clock, make_automation, contact, enqueue)
        stats = await store.stats()
        assert stats == {"pending": 0, "in_progress": 1, "completed": 0, "failed": 0}
        await store.mark_failed(due, "boom")
        assert (await store.stats(user_id=contact.user_id))["failed"] == 1
