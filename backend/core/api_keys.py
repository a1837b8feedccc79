"""Webhook API keys for the public ingest endpoint.

Keys are shown to the tenant once and stored as SHA-256 hashes. The
ingest endpoint receives the raw key in the ``key`` query parameter and
resolves it to the owning tenant.
"""

import hashlib
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyQuery
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_db
from core.utils import utcnow_naive

KEY_PREFIX = "sk_automail"

ingest_key_query = APIKeyQuery(name="key", auto_error=False)


def generate_api_key(prefix: str = KEY_PREFIX) -> tuple[str, str]:
    """Generate a new API key and its hash.

    Returns:
        (raw_key, key_hash) - raw_key is shown once to the tenant, key_hash stored in DB
    """
    raw_key = f"{prefix}_{secrets.token_hex(24)}"
    return raw_key, hash_api_key(raw_key)


def hash_api_key(key: str) -> str:
    """Hash an API key for storage."""
    return hashlib.sha256(key.encode()).hexdigest()


async def resolve_webhook_key(db: AsyncSession, raw_key: str):
    """Look up an active webhook key by its raw value.

    Returns:
        The WebhookKey row, or None if unknown or inactive
    """
    from db.models.webhook_key import WebhookKey

    result = await db.execute(
        select(WebhookKey).where(
            WebhookKey.key_hash == hash_api_key(raw_key),
            WebhookKey.is_active == True,  # noqa: E712
            WebhookKey.is_deleted == False,  # noqa: E712
        )
    )
    return result.scalar_one_or_none()


async def require_ingest_key(
    raw_key: Optional[str] = Depends(ingest_key_query),
    db: AsyncSession = Depends(get_db),
):
    """FastAPI dependency: authenticate an ingest call and return its WebhookKey."""
    if not raw_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    key = await resolve_webhook_key(db, raw_key)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
        )

    key.last_used_at = utcnow_naive()
    return key
