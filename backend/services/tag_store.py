"""Tag store: tenant tags and idempotent contact-tag associations."""

import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models.tag import ContactTag, Tag
from services.base import BaseService

logger = logging.getLogger(__name__)

_INSERT_IGNORE = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class TagStore(BaseService[Tag]):
    """Resolve tags by name and attach them to contacts.

    Both writes are safe to repeat: a tag name resolves to the same row
    every time and a duplicate association is a no-op.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(Tag, db)

    def _dialect_insert(self, table):
        dialect = self.db.get_bind().dialect.name
        insert = _INSERT_IGNORE.get(dialect)
        return insert(table.__table__) if insert else None

    async def find_tag(self, user_id: str, name: str) -> Optional[Tag]:
        result = await self.db.execute(
            select(Tag).where(Tag.user_id == user_id, Tag.name == name)
        )
        return result.scalar_one_or_none()

    async def resolve_or_create_tag(self, user_id: str, name: str) -> str:
        """Return the id of the tenant's tag called ``name``, creating it if needed."""
        name = name.strip()
        tag = await self.find_tag(user_id, name)
        if tag:
            if tag.is_deleted:
                tag.restore()
                await self.db.flush()
            return tag.id

        stmt = self._dialect_insert(Tag)
        if stmt is not None:
            # A concurrent writer wins silently; the re-select below finds its row
            await self.db.execute(
                stmt.values(user_id=user_id, name=name).on_conflict_do_nothing()
            )
        else:
            try:
                async with self.db.begin_nested():
                    self.db.add(Tag(user_id=user_id, name=name))
            except IntegrityError:
                logger.info(f"Tag '{name}' created concurrently for user {user_id}")

        tag = await self.find_tag(user_id, name)
        if tag is None:
            raise RuntimeError(f"Tag '{name}' could not be resolved for user {user_id}")
        return tag.id

    async def associate(self, contact_id: str, tag_id: str) -> bool:
        """Attach a tag to a contact. Returns True only when a new row was written."""
        existing = await self.db.execute(
            select(ContactTag.contact_id).where(
                ContactTag.contact_id == contact_id,
                ContactTag.tag_id == tag_id,
            )
        )
        if existing.first() is not None:
            return False

        stmt = self._dialect_insert(ContactTag)
        if stmt is not None:
            result = await self.db.execute(
                stmt.values(contact_id=contact_id, tag_id=tag_id).on_conflict_do_nothing()
            )
            return (result.rowcount or 0) > 0

        try:
            async with self.db.begin_nested():
                self.db.add(ContactTag(contact_id=contact_id, tag_id=tag_id))
        except IntegrityError:
            return False
        return True

    async def add_tag_to_contact(self, user_id: str, contact_id: str, name: str) -> bool:
        """Resolve ``name`` and attach it. Returns True when newly attached."""
        tag_id = await self.resolve_or_create_tag(user_id, name)
        return await self.associate(contact_id, tag_id)

    async def tag_names_for(self, contact_id: str) -> set[str]:
        result = await self.db.execute(
            select(Tag.name)
            .join(ContactTag, ContactTag.tag_id == Tag.id)
            .where(ContactTag.contact_id == contact_id, Tag.is_deleted == False)  # noqa: E712
        )
        return set(result.scalars().all())

    async def contact_has_tags(self, contact_id: str, names: Iterable[str]) -> bool:
        """Whether the contact carries every tag in ``names``."""
        wanted = set(names)
        if not wanted:
            return True
        return wanted.issubset(await self.tag_names_for(contact_id))
