"""Tests for the send_email and add_tag side effects."""

from dataclasses import replace

import pytest

from core.exceptions import DeliveryError, MissingCredentialError, MissingReferenceError
from services.content_resolver import ContentResolver
from services.credential_store import CredentialStore
from services.tag_store import TagStore
from workflow.definition import AddTagStep, SendEmailStep
from workflow.effects import ContactSnapshot, InlineContent, JobContext, StepExecutor


@pytest.fixture
def hook_calls():
    return []


@pytest.fixture
def executor(db_session, mailer, hook_calls):
    async def on_tag_added(user_id, contact_id, tag_name):
        hook_calls.append((user_id, contact_id, tag_name))
        return 0

    return StepExecutor(
        mailer_factory=mailer.factory,
        tag_store=TagStore(db_session),
        credential_store=CredentialStore(db_session),
        content_resolver=ContentResolver(db_session),
        default_sender="Automail <hello@automail.test>",
        on_tag_added=on_tag_added,
    )


@pytest.fixture
def ctx(contact):
    return JobContext(
        job_id="job-1",
        user_id=contact.user_id,
        automation_id="automation-1",
        contact=ContactSnapshot.from_model(contact),
    )


@pytest.mark.integration
class TestSendEmail:

    async def test_renders_and_sends(self, executor, ctx, mailer, credential, template):
        result = await executor.execute(SendEmailStep(template_id=template.id), ctx)

        assert result.kind == "send_email"
        [sent] = mailer.sent
        assert sent.api_key == "re_test_123"
        assert sent.to == "ada@example.com"
        assert sent.from_identity == "Automail <hello@automail.test>"
        assert sent.subject == "Welcome, Ada"
        assert sent.html == (
            "<p>Hi Ada from Analytical Engines, you are on pro. {{unknown}}</p>"
        )

    async def test_uses_sender_identity(self, executor, ctx, mailer, credential, template, sender):
        await executor.execute(SendEmailStep(template_id=template.id, sender_id=sender.id), ctx)
        assert mailer.sent[0].from_identity == "Acme Team <team@acme.test>"

    async def test_missing_credential(self, executor, ctx, mailer, template):
        with pytest.raises(MissingCredentialError, match="User has no resend key configured"):
            await executor.execute(SendEmailStep(template_id=template.id), ctx)
        assert mailer.sent == []

    async def test_missing_template(self, executor, ctx, mailer, credential):
        with pytest.raises(MissingReferenceError, match="Template nope not found"):
            await executor.execute(SendEmailStep(template_id="nope"), ctx)
        assert mailer.sent == []

    async def test_step_without_template(self, executor, ctx, credential):
        with pytest.raises(MissingReferenceError):
            await executor.execute(SendEmailStep(template_id=""), ctx)

    async def test_campaign_content_without_template(self, executor, ctx, mailer, credential):
        campaign_ctx = replace(
            ctx,
            content=InlineContent(subject="News for {{first_name}}", html="<h1>Hello {{company}}</h1>"),
        )
        await executor.execute(SendEmailStep(template_id=None), campaign_ctx)

        [sent] = mailer.sent
        assert sent.subject == "News for Ada"
        assert sent.html == "<h1>Hello Analytical Engines</h1>"
        assert sent.from_identity == "Automail <hello@automail.test>"

    async def test_empty_campaign_content_uses_defaults(self, executor, ctx, mailer, credential):
        await executor.execute(SendEmailStep(template_id=None), replace(ctx, content=InlineContent()))
        assert mailer.sent[0].subject == "Update"
        assert mailer.sent[0].html == "<p>No content</p>"

    async def test_missing_sender(self, executor, ctx, mailer, credential, template):
        with pytest.raises(MissingReferenceError, match="Sender gone not found"):
            await executor.execute(SendEmailStep(template_id=template.id, sender_id="gone"), ctx)
        assert mailer.sent == []

    async def test_other_tenants_template_is_not_found(self, executor, ctx, credential, template, db_session):
        template.user_id = "someone-else"
        await db_session.commit()
        with pytest.raises(MissingReferenceError):
            await executor.execute(SendEmailStep(template_id=template.id), ctx)

    async def test_provider_failure(self, executor, ctx, mailer, credential, template):
        mailer.fail_for.add("ada@example.com")
        with pytest.raises(DeliveryError, match="Email send failed: mailbox unavailable"):
            await executor.execute(SendEmailStep(template_id=template.id), ctx)

    async def test_deleted_contact(self, executor, ctx, credential, template):
        gone = JobContext(ctx.job_id, ctx.user_id, ctx.automation_id, contact=None)
        with pytest.raises(MissingReferenceError, match="Contact no longer exists"):
            await executor.execute(SendEmailStep(template_id=template.id), gone)


@pytest.mark.integration
class TestAddTag:

    async def test_attaches_tag_and_fires_hook(self, executor, ctx, db_session, hook_calls):
        result = await executor.execute(AddTagStep(tag_name="vip"), ctx)

        assert result.detail["added"] is True
        assert await TagStore(db_session).tag_names_for(ctx.contact.id) == {"vip"}
        assert hook_calls == [(ctx.user_id, ctx.contact.id, "vip")]

    async def test_existing_tag_does_not_fire_hook(self, executor, ctx, hook_calls):
        await executor.execute(AddTagStep(tag_name="vip"), ctx)
        result = await executor.execute(AddTagStep(tag_name="vip"), ctx)

        assert result.detail["added"] is False
        assert len(hook_calls) == 1
