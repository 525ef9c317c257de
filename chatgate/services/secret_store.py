"""
Secret Store - Encrypted per-(user, provider) API keys.

Keys are encrypted before they reach the database and decrypted only on the
way out. The is_valid flag tracks what upstream providers last said about
the key; saving a new key always resets it to false.
"""

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from chatgate.db.models import StoredSecret, utc_now
from chatgate.exceptions import DecryptError
from chatgate.models.api import ModelFamily
from chatgate.models.domain import ProviderSecret, SecretSummary
from chatgate.services.crypto import CryptoBox, Envelope

logger = get_logger(__name__)


class SecretStore:
    """Reads and writes provider_secrets rows through a CryptoBox."""

    def __init__(self, session: AsyncSession, crypto: CryptoBox) -> None:
        self.session = session
        self.crypto = crypto

    async def get(self, user_id: UUID, provider: ModelFamily) -> ProviderSecret | None:
        """
        Fetch and decrypt the stored key, or None when nothing is on file.

        Raises:
            DecryptError: Envelope could not be authenticated
        """
        stmt = select(StoredSecret).where(
            StoredSecret.user_id == user_id,
            StoredSecret.provider == provider.value,
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None

        try:
            api_key = self.crypto.decrypt(Envelope.from_storage(row.envelope))
        except DecryptError:
            logger.error(
                "secret_decrypt_failed",
                user_id=str(user_id),
                provider=provider.value,
            )
            raise

        return ProviderSecret(provider=provider, api_key=api_key, is_valid=row.is_valid)

    async def put(self, user_id: UUID, provider: ModelFamily, plaintext: str) -> None:
        """Encrypt under a fresh nonce and upsert. The key starts out unvalidated."""
        envelope = self.crypto.encrypt(plaintext).to_storage()
        now = utc_now()

        stmt = insert(StoredSecret).values(
            user_id=user_id,
            provider=provider.value,
            envelope=envelope,
            is_valid=False,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_provider_secrets_user_provider",
            set_={
                "envelope": stmt.excluded.envelope,
                "is_valid": False,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.commit()

        logger.info("secret_saved", user_id=str(user_id), provider=provider.value)

    async def mark_validity(self, user_id: UUID, provider: ModelFamily, valid: bool) -> None:
        stmt = (
            update(StoredSecret)
            .where(
                StoredSecret.user_id == user_id,
                StoredSecret.provider == provider.value,
            )
            .values(is_valid=valid, updated_at=utc_now())
        )
        await self.session.execute(stmt)
        await self.session.commit()

        logger.info(
            "secret_validity_marked",
            user_id=str(user_id),
            provider=provider.value,
            is_valid=valid,
        )

    async def delete(self, user_id: UUID, provider: ModelFamily) -> bool:
        """Remove the stored key. Returns False if there was none."""
        stmt = (
            delete(StoredSecret)
            .where(
                StoredSecret.user_id == user_id,
                StoredSecret.provider == provider.value,
            )
            .returning(StoredSecret.id)
        )
        result = await self.session.execute(stmt)
        deleted = result.scalar_one_or_none() is not None
        await self.session.commit()

        logger.info(
            "secret_deleted", user_id=str(user_id), provider=provider.value, deleted=deleted
        )
        return deleted

    async def list_providers(self, user_id: UUID) -> list[SecretSummary]:
        """Providers with a key on file, oldest first. Never decrypts."""
        stmt = (
            select(StoredSecret.provider, StoredSecret.is_valid, StoredSecret.created_at)
            .where(StoredSecret.user_id == user_id)
            .order_by(StoredSecret.created_at)
        )
        result = await self.session.execute(stmt)
        return [
            SecretSummary(provider=ModelFamily(provider), is_valid=is_valid, created_at=created_at)
            for provider, is_valid, created_at in result.all()
        ]
