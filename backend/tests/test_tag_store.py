"""Tests for tag resolution and idempotent association."""

import pytest
from sqlalchemy import func, select

from db.models.tag import ContactTag, Tag
from services.tag_store import TagStore


@pytest.mark.integration
class TestTagStore:

    async def test_resolve_creates_once(self, db_session, tenant):
        store = TagStore(db_session)
        first = await store.resolve_or_create_tag(tenant.id, "vip")
        second = await store.resolve_or_create_tag(tenant.id, " vip ")
        assert first == second

        count = await db_session.execute(select(func.count()).select_from(Tag))
        assert count.scalar() == 1

    async def test_tags_are_tenant_scoped(self, db_session, tenant):
        from db.models.user import User

        other = User(email="other@example.com", full_name="Other", is_active=True)
        db_session.add(other)
        await db_session.flush()

        store = TagStore(db_session)
        mine = await store.resolve_or_create_tag(tenant.id, "vip")
        theirs = await store.resolve_or_create_tag(other.id, "vip")
        assert mine != theirs

    async def test_associate_is_idempotent(self, db_session, contact):
        store = TagStore(db_session)
        tag_id = await store.resolve_or_create_tag(contact.user_id, "vip")

        assert await store.associate(contact.id, tag_id) is True
        assert await store.associate(contact.id, tag_id) is False

        count = await db_session.execute(
            select(func.count()).select_from(ContactTag).where(ContactTag.contact_id == contact.id)
        )
        assert count.scalar() == 1

    async def test_deleted_tag_is_restored(self, db_session, tenant):
        store = TagStore(db_session)
        tag_id = await store.resolve_or_create_tag(tenant.id, "old")
        tag = await db_session.get(Tag, tag_id)
        tag.is_deleted = True
        await db_session.flush()

        assert await store.resolve_or_create_tag(tenant.id, "old") == tag_id
        assert (await db_session.get(Tag, tag_id)).is_deleted is False

    async def test_contact_has_tags(self, db_session, contact):
        store = TagStore(db_session)
        await store.add_tag_to_contact(contact.user_id, contact.id, "customer")
        await store.add_tag_to_contact(contact.user_id, contact.id, "vip")

        assert await store.tag_names_for(contact.id) == {"customer", "vip"}
        assert await store.contact_has_tags(contact.id, ["customer"])
        assert await store.contact_has_tags(contact.id, [])
        assert not await store.contact_has_tags(contact.id, ["customer", "churned"])
