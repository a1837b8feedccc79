"""Shared pytest fixtures for the Automail engine test suite.

Provides:
- A fresh in-memory async SQLite database per test
- A session factory bound to it (what the scheduler uses) and a session
- FastAPI test client (httpx.AsyncClient) wired to the same database
- Tenant data: user, contact, template, sender, vault credential, webhook key
- A recording fake mailer and controllable clocks
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production-0123456789")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("CRON_USERNAME", "cron")
os.environ.setdefault("CRON_PASSWORD", "cron-secret")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from core.constants import AutomationKind, AutomationStatus, TriggerType  # noqa: E402
from core.security import create_access_token  # noqa: E402
from db.base import Base  # noqa: E402
from integrations.mailer import BaseMailer, MailResult  # noqa: E402

T0 = datetime(2026, 3, 2, 9, 0, 0)


# ---------------------------------------------------------------------------
# Clocks and mailer
# ---------------------------------------------------------------------------

class FakeClock:
    """Naive-UTC clock the test moves by hand."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@dataclass
class SentEmail:
    api_key: str
    from_identity: str
    to: str
    subject: str
    html: str


@dataclass
class FakeMailer(BaseMailer):
    """Records sends; fails for addresses in ``fail_for``."""

    provider: str = "fake"
    fail_for: set = field(default_factory=set)
    sent: list = field(default_factory=list)
    monotonic: Optional[FakeMonotonic] = None
    seconds_per_send: float = 0.0
    _api_key: str = ""

    def factory(self, api_key: str) -> "FakeMailer":
        self._api_key = api_key
        return self

    async def send(self, from_identity, to, subject, html) -> MailResult:
        if self.monotonic is not None:
            self.monotonic.advance(self.seconds_per_send)
        self.sent.append(SentEmail(self._api_key, from_identity, to, subject, html))
        if to in self.fail_for:
            return MailResult(success=False, error="mailbox unavailable", status_code=422)
        return MailResult(success=True, message_id=f"msg_{len(self.sent)}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """A fresh in-memory database per test; every session shares its one connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for seeding and assertions. Fixtures commit what they create."""
    async with session_factory() as session:
        yield session


async def reload(session: AsyncSession, model, id: str):
    """Fetch a row bypassing the identity map (other sessions changed it)."""
    return await session.get(model, id, populate_existing=True)


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(db_engine, session_factory, mailer):
    """FastAPI app wired to the test database and the fake mailer."""
    import db.database as db_mod

    original_engine = db_mod.engine
    original_session = db_mod.AsyncSessionLocal
    db_mod.engine = db_engine
    db_mod.AsyncSessionLocal = session_factory

    from app.main import create_app

    test_app = create_app()
    test_app.state.mailer_factory = mailer.factory

    yield test_app

    db_mod.engine = original_engine
    db_mod.AsyncSessionLocal = original_session


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def cron_auth() -> tuple[str, str]:
    return (os.environ["CRON_USERNAME"], os.environ["CRON_PASSWORD"])


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def tenant(db_session):
    from db.models.user import User

    user = User(
        id=str(uuid4()),
        email=f"owner-{uuid4().hex[:8]}@example.com",
        full_name="Test Owner",
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def auth_headers(tenant) -> dict:
    token = create_access_token(user_id=tenant.id, email=tenant.email)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def make_contact(db_session, tenant):
    from db.models.contact import Contact

    async def _make(email: str = None, **fields):
        contact = Contact(
            id=str(uuid4()),
            user_id=fields.pop("user_id", tenant.id),
            email=email or f"contact-{uuid4().hex[:8]}@example.com",
            custom_fields=fields.pop("custom_fields", {}),
            **fields,
        )
        db_session.add(contact)
        await db_session.commit()
        return contact

    return _make


@pytest_asyncio.fixture
async def contact(make_contact):
    return await make_contact(
        "ada@example.com",
        first_name="Ada",
        last_name="Lovelace",
        company="Analytical Engines",
        custom_fields={"plan": "pro"},
    )


@pytest_asyncio.fixture
async def template(db_session, tenant):
    from db.models.email_template import EmailTemplate

    tpl = EmailTemplate(
        id=str(uuid4()),
        user_id=tenant.id,
        name="Welcome",
        subject="Welcome, {{first_name}}",
        content="<p>Hi {{ first_name }} from {{company}}, you are on {{contact.plan}}. {{unknown}}</p>",
    )
    db_session.add(tpl)
    await db_session.commit()
    return tpl


@pytest_asyncio.fixture
async def sender(db_session, tenant):
    from db.models.sender_identity import SenderIdentity

    identity = SenderIdentity(
        id=str(uuid4()),
        user_id=tenant.id,
        name="Acme Team",
        email="team@acme.test",
        is_verified=True,
    )
    db_session.add(identity)
    await db_session.commit()
    return identity


@pytest_asyncio.fixture
async def credential(db_session, tenant):
    from services.credential_store import CredentialStore

    key = await CredentialStore(db_session).store_credential(tenant.id, "resend", "re_test_123")
    await db_session.commit()
    return key


@pytest_asyncio.fixture
async def webhook_key(db_session, tenant) -> str:
    """Returns the raw ingest key."""
    from core.api_keys import generate_api_key
    from db.models.webhook_key import WebhookKey

    raw_key, key_hash = generate_api_key()
    db_session.add(WebhookKey(
        id=str(uuid4()),
        user_id=tenant.id,
        name="Signup form",
        key_hash=key_hash,
        key_prefix=raw_key[:15],
        is_active=True,
    ))
    await db_session.commit()
    return raw_key


@pytest_asyncio.fixture
async def make_automation(db_session, tenant):
    from db.models.automation import Automation

    async def _make(
        steps: list,
        trigger_type: str = TriggerType.MANUAL.value,
        trigger: dict = None,
        status: str = AutomationStatus.ACTIVE.value,
        kind: str = AutomationKind.AUTOMATION.value,
        **fields,
    ):
        automation = Automation(
            id=str(uuid4()),
            user_id=fields.pop("user_id", tenant.id),
            name=fields.pop("name", "Test automation"),
            kind=kind,
            status=status,
            trigger_type=trigger_type,
            workflow_config={"trigger": trigger or {"type": trigger_type}, "steps": steps},
            total_sent=0,
            **fields,
        )
        db_session.add(automation)
        await db_session.commit()
        return automation

    return _make


@pytest_asyncio.fixture
async def make_campaign(make_automation):
    async def _make(steps: list, scheduled_at: datetime, segment_config: dict = None, **fields):
        return await make_automation(
            steps,
            kind=AutomationKind.CAMPAIGN.value,
            status=fields.pop("status", AutomationStatus.SCHEDULED.value),
            scheduled_at=scheduled_at,
            segment_config=segment_config or {"type": "all"},
            **fields,
        )

    return _make


@pytest_asyncio.fixture
async def enqueue(db_session, clock):
    """Enqueue a job for (automation, contact) at the fake clock's now."""
    from services.queue_store import QueueStore

    async def _enqueue(automation, contact_id: str, **kwargs):
        job = await QueueStore(db_session, clock=clock).enqueue(automation, contact_id, **kwargs)
        await db_session.commit()
        return job

    return _enqueue


@pytest_asyncio.fixture
async def run_scheduler(session_factory, mailer, clock, monotonic):
    """Run one scheduler pass against the test database."""
    from workflow.runner import run_scheduler_once

    async def _run(deadline_budget: float = 45.0, batch_size: int = 50):
        return await run_scheduler_once(
            session_factory,
            mailer_factory=mailer.factory,
            deadline_budget=deadline_budget,
            batch_size=batch_size,
            clock=clock,
            monotonic=monotonic,
            source="test",
        )

    return _run
