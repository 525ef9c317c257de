"""
Chat Importer - Stores conversations brought in from other assistants.

A confirmed import writes the chat, its messages and the import_count bump
in a single transaction. If any part fails, none of it is kept.
"""

from collections.abc import Sequence
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from chatgate.db.models import ImportedChat, ImportedMessage, utc_now
from chatgate.exceptions import ImportNotFoundError, QuotaExceededError
from chatgate.models.domain import ImportedLine, ImportedThread
from chatgate.services.ledger import CreditLedger

logger = get_logger(__name__)

DEFAULT_TITLE = "Imported Chat"
DEFAULT_PROVIDER = "other"
SUMMARY_PENDING = "Processing..."


class ChatImporter:
    """Imported chat persistence sharing the ledger's session."""

    def __init__(self, session: AsyncSession, ledger: CreditLedger) -> None:
        self.session = session
        self.ledger = ledger

    async def confirm(
        self,
        user_id: UUID,
        messages: Sequence[ImportedLine],
        title: str = DEFAULT_TITLE,
        provider: str = DEFAULT_PROVIDER,
        source_url: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> tuple[UUID, int]:
        """
        Persist an imported chat and count it against the plan.

        Returns:
            The new chat id and the caller's import count after this import

        Raises:
            QuotaExceededError: Free plan already at the import limit
        """
        if not messages:
            raise ValueError("an import needs at least one message")

        chat_id = uuid4()
        try:
            import_count = await self.ledger.record_import(user_id, commit=False)

            self.session.add(
                ImportedChat(
                    id=chat_id,
                    user_id=user_id,
                    provider=provider or DEFAULT_PROVIDER,
                    source_url=source_url,
                    title=title or DEFAULT_TITLE,
                    summary_short=SUMMARY_PENDING,
                    chat_metadata=dict(metadata or {}),
                    created_at=utc_now(),
                )
            )
            await self.session.flush()

            self.session.add_all(
                [
                    ImportedMessage(
                        imported_chat_id=chat_id,
                        role=line.role,
                        content=line.content,
                        original_index=index,
                    )
                    for index, line in enumerate(messages)
                ]
            )
            await self.session.flush()
        except (QuotaExceededError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.warning("chat_import_rolled_back", user_id=str(user_id), error=str(e))
            raise

        await self.session.commit()
        logger.info(
            "chat_imported",
            user_id=str(user_id),
            chat_id=str(chat_id),
            provider=provider,
            message_count=len(messages),
            import_count=import_count,
        )
        return chat_id, import_count

    async def get_thread(self, user_id: UUID, chat_id: UUID) -> ImportedThread:
        """
        Load one of the caller's imported chats.

        Raises:
            ImportNotFoundError: No such chat for this user
        """
        result = await self.session.execute(
            select(ImportedChat).where(ImportedChat.id == chat_id, ImportedChat.user_id == user_id)
        )
        chat = result.scalar_one_or_none()
        if chat is None:
            raise ImportNotFoundError(chat_id)

        result = await self.session.execute(
            select(ImportedMessage)
            .where(ImportedMessage.imported_chat_id == chat_id)
            .order_by(ImportedMessage.original_index)
        )
        lines = tuple(ImportedLine(role=m.role, content=m.content) for m in result.scalars())

        return ImportedThread(
            chat_id=chat.id,
            user_id=chat.user_id,
            title=chat.title,
            provider=chat.provider,
            source_url=chat.source_url,
            summary_short=chat.summary_short,
            metadata=dict(chat.chat_metadata),
            created_at=chat.created_at,
            messages=lines,
        )
