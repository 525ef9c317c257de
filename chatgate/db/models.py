"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Profile(Base):
    """
    ORM model for profiles table.

    One row per identity-provider user. The id is owned by the identity
    provider; credits are only mutated through CreditLedger.
    """

    __tablename__ = "profiles"

    # Primary Key (identity provider user id)
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Plan and balance
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Free-tier counters
    monthly_project_creations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    import_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_profiles_credits_non_negative"),
        CheckConstraint(
            "plan IN ('free', 'pro', 'premium')", name="ck_profiles_plan"
        ),
        CheckConstraint(
            "monthly_project_creations >= 0", name="ck_profiles_projects_non_negative"
        ),
        CheckConstraint("import_count >= 0", name="ck_profiles_imports_non_negative"),
        Index("idx_profiles_plan", "plan"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Profile(id={self.id}, plan={self.plan}, credits={self.credits})>"


class StoredSecret(Base):
    """
    ORM model for provider_secrets table.

    One encrypted provider key per (user, provider). The envelope is opaque
    JSON holding a base64 iv and ciphertext.
    """

    __tablename__ = "provider_secrets"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)

    envelope: Mapped[str] = mapped_column(Text, nullable=False)

    # Flipped by observed upstream responses
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_provider_secrets_user_provider"),
        CheckConstraint(
            "provider IN ('gemini', 'openai', 'perplexity', 'huggingface')",
            name="ck_provider_secrets_provider",
        ),
        Index("idx_provider_secrets_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging (never the envelope)."""
        return (
            f"<StoredSecret(user_id={self.user_id}, provider={self.provider}, "
            f"is_valid={self.is_valid})>"
        )


class OtpCode(Base):
    """
    ORM model for otp_codes table.

    One row per send. Only the salted HMAC of the code is stored.
    """

    __tablename__ = "otp_codes"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    otp_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    salt: Mapped[str] = mapped_column(String(64), nullable=False)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_otp_codes_attempts_non_negative"),
        Index("idx_otp_codes_email_created_at", "email", "created_at"),
        Index(
            "idx_otp_codes_active",
            "email",
            "expires_at",
            postgresql_where=text("used = false"),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging (never the hash or salt)."""
        return (
            f"<OtpCode(id={self.id}, email={self.email}, attempts={self.attempts}, "
            f"used={self.used})>"
        )


class ImportedChat(Base):
    """
    ORM model for imported_chats table.

    A conversation brought in from another assistant. The summary stays at
    its placeholder until a summarizer fills it in.
    """

    __tablename__ = "imported_chats"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)

    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    source_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="Imported Chat")
    summary_short: Mapped[str] = mapped_column(Text, nullable=False, default="Processing...")

    # "metadata" is reserved on declarative classes
    chat_metadata: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_imported_chats_user_id_created_at", "user_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<ImportedChat(id={self.id}, user_id={self.user_id}, provider={self.provider})>"


class ImportedMessage(Base):
    """ORM model for imported_messages table, in original order."""

    __tablename__ = "imported_messages"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    imported_chat_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("imported_chats.id", ondelete="CASCADE"),
        nullable=False,
    )

    role: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    original_index: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "imported_chat_id", "original_index", name="uq_imported_messages_chat_index"
        ),
        CheckConstraint("original_index >= 0", name="ck_imported_messages_index_non_negative"),
    )
