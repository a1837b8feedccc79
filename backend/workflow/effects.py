"""Side-effect executor for the steps the interpreter hands back.

The executor talks to the outside world only through its collaborators:
a mailer factory (one provider client per tenant key), a tag store, a
credential store and a content resolver. Any failure is raised as a
``JobFatalError`` subclass and ends the job.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from core.constants import CredentialProvider
from core.exceptions import (
    DeliveryError,
    MissingCredentialError,
    MissingReferenceError,
    StepConfigError,
)
from integrations.mailer import MailerFactory
from workflow.definition import AddTagStep, SendEmailStep
from workflow.personalization import build_variables, extract_variables, render

logger = structlog.get_logger(__name__)

DEFAULT_SUBJECT = "Update"
DEFAULT_CONTENT = "<p>No content</p>"


@dataclass(frozen=True)
class ContactSnapshot:
    """The contact fields a job needs, detached from any session."""

    id: str
    email: Optional[str]
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    custom_fields: dict = field(default_factory=dict)

    @classmethod
    def from_model(cls, contact: Any) -> "ContactSnapshot":
        return cls(
            id=contact.id,
            email=contact.email,
            first_name=contact.first_name,
            last_name=contact.last_name,
            company=contact.company,
            custom_fields=dict(contact.custom_fields or {}),
        )


@dataclass(frozen=True)
class InlineContent:
    """A campaign's own subject and HTML body."""

    subject: Optional[str] = None
    html: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["InlineContent"]:
        if not isinstance(data, dict):
            return None
        return cls(subject=data.get("subject"), html=data.get("html"))


@dataclass(frozen=True)
class JobContext:
    """Who a side effect runs for.

    ``content`` is set for campaign jobs; ``send_email`` steps without a
    template render it instead.
    """

    job_id: str
    user_id: str
    automation_id: str
    contact: Optional[ContactSnapshot]
    content: Optional[InlineContent] = None


@dataclass
class EffectResult:
    """What a side effect did; ``detail`` is logged, never persisted."""

    kind: str
    detail: dict = field(default_factory=dict)


TagAddedHook = Callable[[str, str, str], Awaitable[int]]


class StepExecutor:
    """Perform ``send_email`` and ``add_tag`` for a single job.

    Args:
        mailer_factory: Builds a mailer from the tenant's provider key
        tag_store: ``services.tag_store.TagStore`` or compatible
        credential_store: ``services.credential_store.CredentialStore`` or compatible
        content_resolver: ``services.content_resolver.ContentResolver`` or compatible
        default_sender: From identity used when a step names no sender
        provider: Vault provider code of the email credential
        on_tag_added: Awaited with (user_id, contact_id, tag_name) when a tag
            is newly attached; returns the number of jobs it enqueued
    """

    def __init__(
        self,
        mailer_factory: MailerFactory,
        tag_store,
        credential_store,
        content_resolver,
        default_sender: str,
        provider: str = CredentialProvider.RESEND.value,
        on_tag_added: Optional[TagAddedHook] = None,
    ):
        self.mailer_factory = mailer_factory
        self.tag_store = tag_store
        self.credential_store = credential_store
        self.content_resolver = content_resolver
        self.default_sender = default_sender
        self.provider = provider
        self.on_tag_added = on_tag_added

    async def execute(
        self,
        effect: Union[SendEmailStep, AddTagStep],
        ctx: JobContext,
    ) -> EffectResult:
        if isinstance(effect, SendEmailStep):
            return await self._send_email(effect, ctx)
        if isinstance(effect, AddTagStep):
            return await self._add_tag(effect, ctx)
        raise StepConfigError(f"No executor for step {effect!r}")

    async def _resolve_api_key(self, user_id: str) -> str:
        try:
            api_key = await self.credential_store.get_decrypted_credential(user_id, self.provider)
        except ValueError as e:
            raise MissingCredentialError(f"{self.provider} key could not be decrypted: {e}") from e
        if not api_key:
            raise MissingCredentialError(f"User has no {self.provider} key configured")
        return api_key

    async def _send_email(self, step: SendEmailStep, ctx: JobContext) -> EffectResult:
        contact = ctx.contact
        if contact is None:
            raise MissingReferenceError("Contact no longer exists")
        if not contact.email:
            raise MissingReferenceError(f"Contact {contact.id} has no email address")

        api_key = await self._resolve_api_key(ctx.user_id)

        if step.template_id:
            template = await self.content_resolver.get_template(ctx.user_id, step.template_id)
            if template is None:
                raise MissingReferenceError(f"Template {step.template_id} not found")
            subject_source, html_source = template.subject, template.content
        elif ctx.content is not None:
            subject_source, html_source = ctx.content.subject, ctx.content.html
        else:
            raise MissingReferenceError("send_email step has no template")

        from_identity = self.default_sender
        if step.sender_id:
            sender = await self.content_resolver.get_sender(ctx.user_id, step.sender_id)
            if sender is None:
                raise MissingReferenceError(f"Sender {step.sender_id} not found")
            from_identity = sender.from_header

        variables = build_variables(contact)
        subject = render(subject_source or DEFAULT_SUBJECT, variables)
        html = render(html_source or DEFAULT_CONTENT, variables)

        unresolved = extract_variables(subject) + extract_variables(html)
        if unresolved:
            logger.debug("Template has unresolved tokens", job_id=ctx.job_id, tokens=unresolved)

        result = await self.mailer_factory(api_key).send(from_identity, contact.email, subject, html)
        if not result.success:
            raise DeliveryError(f"Email send failed: {result.error or 'Unknown error'}")

        logger.info(
            "Email sent",
            job_id=ctx.job_id,
            contact_id=contact.id,
            template_id=step.template_id,
            message_id=result.message_id,
        )
        return EffectResult(
            kind="send_email",
            detail={"to": contact.email, "from": from_identity, "message_id": result.message_id},
        )

    async def _add_tag(self, step: AddTagStep, ctx: JobContext) -> EffectResult:
        if ctx.contact is None:
            raise MissingReferenceError("Contact no longer exists")

        tag_id = await self.tag_store.resolve_or_create_tag(ctx.user_id, step.tag_name)
        added = await self.tag_store.associate(ctx.contact.id, tag_id)

        enrolled = 0
        if added and self.on_tag_added is not None:
            enrolled = await self.on_tag_added(ctx.user_id, ctx.contact.id, step.tag_name)

        logger.info(
            "Tag applied",
            job_id=ctx.job_id,
            contact_id=ctx.contact.id,
            tag=step.tag_name,
            newly_added=added,
            enrolled=enrolled,
        )
        return EffectResult(
            kind="add_tag",
            detail={"tag": step.tag_name, "tag_id": tag_id, "added": added, "enrolled": enrolled},
        )
