"""
OTP Auth Bridge - Email one-time codes exchanged for identity-provider sessions.

Codes are 6 digits, stored only as HMAC-SHA256(key=salt, msg=code), expire
after a fixed window, lock after a fixed number of wrong guesses and can be
redeemed once. A successful verification mints a magic-link token.
"""

import hashlib
import hmac
import math
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from chatgate.db.models import OtpCode, utc_now
from chatgate.exceptions import (
    CooldownError,
    EmailDeliveryError,
    InvalidCodeError,
    InvalidOrExpiredError,
    TooManyAttemptsError,
)
from chatgate.models.domain import OtpChallenge, VerifiedSession
from chatgate.observability.logging import redact_email
from chatgate.observability.metrics import metrics
from chatgate.services.email import EmailSender
from chatgate.services.identity import SessionMinter

logger = get_logger(__name__)

OTP_COOLDOWN_SECONDS = 60
OTP_EXPIRY_MINUTES = 10
OTP_MAX_ATTEMPTS = 3


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_code() -> str:
    """Six decimal digits, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))


def hash_code(code: str, salt: str) -> str:
    """Hex HMAC-SHA256 of the code keyed by the salt."""
    return hmac.new(salt.encode("utf-8"), code.encode("utf-8"), hashlib.sha256).hexdigest()


class OtpRepository(Protocol):
    """Persistence operations the bridge needs. Each mutation is atomic."""

    async def create_outside_cooldown(
        self,
        email: str,
        otp_hash: str,
        salt: str,
        created_at: datetime,
        expires_at: datetime,
        cooldown_since: datetime,
    ) -> datetime | None: ...

    async def find_active(self, email: str, now: datetime) -> OtpChallenge | None: ...

    async def reserve_attempt(self, challenge_id: UUID, max_attempts: int) -> int | None: ...

    async def mark_used(self, challenge_id: UUID, max_attempts: int) -> bool: ...


class SqlOtpRepository:
    """otp_codes table access over an AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_outside_cooldown(
        self,
        email: str,
        otp_hash: str,
        salt: str,
        created_at: datetime,
        expires_at: datetime,
        cooldown_since: datetime,
    ) -> datetime | None:
        """
        Insert a challenge unless one was created after cooldown_since.

        A transaction-scoped advisory lock on the email serializes concurrent
        sends, so the check and the insert see the same history.

        Returns:
            None when the row was inserted, otherwise the blocking created_at
        """
        await self.session.execute(select(func.pg_advisory_xact_lock(func.hashtext(email))))

        stmt = select(func.max(OtpCode.created_at)).where(OtpCode.email == email)
        result = await self.session.execute(stmt)
        latest = result.scalar_one_or_none()
        if latest is not None and latest > cooldown_since:
            await self.session.rollback()
            return latest

        self.session.add(
            OtpCode(
                email=email,
                otp_hash=otp_hash,
                salt=salt,
                attempts=0,
                used=False,
                created_at=created_at,
                expires_at=expires_at,
            )
        )
        await self.session.commit()
        return None

    async def find_active(self, email: str, now: datetime) -> OtpChallenge | None:
        """Newest unused, unexpired challenge for the email."""
        stmt = (
            select(OtpCode)
            .where(
                OtpCode.email == email,
                OtpCode.used.is_(False),
                OtpCode.expires_at > now,
            )
            .order_by(OtpCode.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return OtpChallenge(
            id=row.id,
            email=row.email,
            otp_hash=row.otp_hash,
            salt=row.salt,
            attempts=row.attempts,
            used=row.used,
            created_at=row.created_at,
            expires_at=row.expires_at,
        )

    async def reserve_attempt(self, challenge_id: UUID, max_attempts: int) -> int | None:
        """
        Count one attempt before the code is compared.

        Returns the new attempt count, or None once the challenge is used or
        has already spent max_attempts.
        """
        stmt = (
            update(OtpCode)
            .where(
                OtpCode.id == challenge_id,
                OtpCode.used.is_(False),
                OtpCode.attempts < max_attempts,
            )
            .values(attempts=OtpCode.attempts + 1)
            .returning(OtpCode.attempts)
        )
        result = await self.session.execute(stmt)
        attempts = result.scalar_one_or_none()
        await self.session.commit()
        return None if attempts is None else int(attempts)

    async def mark_used(self, challenge_id: UUID, max_attempts: int) -> bool:
        """Flip used once. False means it was already redeemed or is locked."""
        stmt = (
            update(OtpCode)
            .where(
                OtpCode.id == challenge_id,
                OtpCode.used.is_(False),
                OtpCode.attempts <= max_attempts,
            )
            .values(used=True)
            .returning(OtpCode.id)
        )
        result = await self.session.execute(stmt)
        flipped = result.scalar_one_or_none() is not None
        await self.session.commit()
        return flipped


class OtpAuthBridge:
    """Send and verify one-time codes."""

    def __init__(
        self,
        repository: OtpRepository,
        email_sender: EmailSender,
        minter: SessionMinter,
        now: Callable[[], datetime] = utc_now,
        cooldown_seconds: int = OTP_COOLDOWN_SECONDS,
        expiry_minutes: int = OTP_EXPIRY_MINUTES,
        max_attempts: int = OTP_MAX_ATTEMPTS,
    ) -> None:
        self.repository = repository
        self.email_sender = email_sender
        self.minter = minter
        self.now = now
        self.cooldown_seconds = cooldown_seconds
        self.expiry_minutes = expiry_minutes
        self.max_attempts = max_attempts

    async def send(self, email: str) -> None:
        """
        Issue a new code and email it.

        The challenge is committed before delivery, so a delivery failure
        still starts the cooldown.

        Raises:
            CooldownError: A code was sent to this email within the cooldown
            EmailDeliveryError: The email collaborator failed
        """
        email = normalize_email(email)
        now = self.now()

        code = generate_code()
        salt = secrets.token_hex(16)
        latest = await self.repository.create_outside_cooldown(
            email=email,
            otp_hash=hash_code(code, salt),
            salt=salt,
            created_at=now,
            expires_at=now + timedelta(minutes=self.expiry_minutes),
            cooldown_since=now - timedelta(seconds=self.cooldown_seconds),
        )
        if latest is not None:
            elapsed = (now - latest).total_seconds()
            retry_after = max(1, math.ceil(self.cooldown_seconds - elapsed))
            metrics.record_otp_send("cooldown")
            logger.info("otp_send_cooldown", email=redact_email(email), retry_after=retry_after)
            raise CooldownError(retry_after_seconds=retry_after)

        try:
            await self.email_sender.send_otp(email, code)
        except EmailDeliveryError:
            metrics.record_otp_send("delivery_failed")
            raise

        metrics.record_otp_send("sent")
        logger.info("otp_sent", email=redact_email(email))

    async def verify(self, email: str, code: str) -> VerifiedSession:
        """
        Redeem a code for a session token.

        Every guess reserves an attempt before the comparison, so concurrent
        guesses cannot evaluate more than max_attempts codes.

        Raises:
            InvalidOrExpiredError: No live challenge, or it was redeemed concurrently
            TooManyAttemptsError: The challenge is locked
            InvalidCodeError: Wrong code (the attempt is counted)
            IdentityProviderError: Token minting failed
        """
        email = normalize_email(email)
        code = code.strip()

        challenge = await self.repository.find_active(email, self.now())
        if challenge is None:
            metrics.record_otp_verification("invalid_or_expired")
            raise InvalidOrExpiredError()

        attempts = await self.repository.reserve_attempt(challenge.id, self.max_attempts)
        if attempts is None:
            metrics.record_otp_verification("too_many_attempts")
            logger.info("otp_locked", email=redact_email(email), challenge_id=str(challenge.id))
            raise TooManyAttemptsError()

        if not hmac.compare_digest(hash_code(code, challenge.salt), challenge.otp_hash):
            metrics.record_otp_verification("invalid_code")
            logger.info(
                "otp_mismatch",
                email=redact_email(email),
                challenge_id=str(challenge.id),
                attempts=attempts,
            )
            raise InvalidCodeError(attempts_remaining=max(0, self.max_attempts - attempts))

        if not await self.repository.mark_used(challenge.id, self.max_attempts):
            metrics.record_otp_verification("invalid_or_expired")
            logger.warning(
                "otp_already_used", email=redact_email(email), challenge_id=str(challenge.id)
            )
            raise InvalidOrExpiredError()

        token = await self.minter.mint(email)
        metrics.record_otp_verification("verified")
        logger.info("otp_verified", email=redact_email(email))
        return VerifiedSession(token=token, email=email)
