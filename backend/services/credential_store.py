"""Credential store: per-tenant provider keys kept encrypted in the vault."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.security import CredentialVault, get_vault
from core.utils import utcnow_naive
from db.models.vault_key import VaultKey
from services.base import BaseService

logger = logging.getLogger(__name__)


class CredentialStore(BaseService[VaultKey]):
    """Read and write tenant API keys.

    Plaintext never touches the database; ``encrypted_value`` holds a
    Fernet token produced by ``CredentialVault``.
    """

    def __init__(self, db: AsyncSession, vault: Optional[CredentialVault] = None):
        super().__init__(VaultKey, db)
        self._vault = vault

    @property
    def vault(self) -> CredentialVault:
        if self._vault is None:
            self._vault = get_vault()
        return self._vault

    async def get_active_key(self, user_id: str, provider: str) -> Optional[VaultKey]:
        """Most recently updated active key for a provider."""
        result = await self.db.execute(
            select(VaultKey)
            .where(
                VaultKey.user_id == user_id,
                VaultKey.provider == provider,
                VaultKey.is_active == True,  # noqa: E712
                VaultKey.is_deleted == False,  # noqa: E712
            )
            .order_by(VaultKey.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_decrypted_credential(self, user_id: str, provider: str) -> Optional[str]:
        """Return the tenant's plaintext key for ``provider``, or None if absent.

        Raises:
            ValueError: The stored token cannot be decrypted with the
                configured ENCRYPTION_KEY
        """
        key = await self.get_active_key(user_id, provider)
        if key is None:
            return None

        plaintext = self.vault.decrypt(key.encrypted_value)
        key.last_used_at = utcnow_naive()
        return plaintext

    async def store_credential(
        self,
        user_id: str,
        provider: str,
        secret: str,
        key_name: str = "default",
        metadata: Optional[dict] = None,
    ) -> VaultKey:
        """Encrypt and store a key, deactivating older keys for the provider."""
        existing = await self.db.execute(
            select(VaultKey).where(
                VaultKey.user_id == user_id,
                VaultKey.provider == provider,
                VaultKey.is_active == True,  # noqa: E712
            )
        )
        for old in existing.scalars().all():
            old.is_active = False

        key = await self.create({
            "user_id": user_id,
            "provider": provider,
            "key_name": key_name,
            "encrypted_value": self.vault.encrypt(secret),
            "metadata_": metadata or {},
            "is_active": True,
        })
        logger.info(f"Stored {provider} credential '{key_name}' for user {user_id}")
        return key
