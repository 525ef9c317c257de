"""
Domain Models - Internal business logic models using dataclasses.

All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from chatgate.models.api import ChatRequest, ChatRole, ModelFamily, Plan


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity resolved from a bearer credential."""

    user_id: UUID
    email: str | None = None


@dataclass(frozen=True)
class ChatMessage:
    """One normalized history entry."""

    role: ChatRole
    content: str

    @property
    def is_assistant(self) -> bool:
        """True for both spellings of the assistant role."""
        return self.role in (ChatRole.ASSISTANT, ChatRole.MODEL)


@dataclass(frozen=True)
class ChatTurn:
    """Prior history plus the new prompt, consumed once by the gateway."""

    history: tuple[ChatMessage, ...]
    prompt: str
    model_id: str
    project_id: str
    api_key: str | None = None

    def __post_init__(self) -> None:
        """Validate turn constraints."""
        if not self.prompt.strip():
            raise ValueError("prompt cannot be empty")
        if not self.model_id:
            raise ValueError("model_id cannot be empty")

    @classmethod
    def from_request(cls, request: ChatRequest) -> "ChatTurn":
        """Split the request's message list into history and the trailing prompt."""
        *prior, last = request.messages
        return cls(
            history=tuple(ChatMessage(role=m.role, content=m.content) for m in prior),
            prompt=last.content,
            model_id=request.model_id,
            project_id=request.project_id,
            api_key=request.api_key or None,
        )


@dataclass(frozen=True)
class ModelSpec:
    """Catalog entry: which family serves a model id and under what upstream name."""

    family: ModelFamily
    upstream_model: str


@dataclass(frozen=True)
class ChatResult:
    """Outcome of a successful, charged chat turn."""

    text: str
    credits_remaining: int
    model_id: str
    provider: ModelFamily


@dataclass(frozen=True)
class Balance:
    """Credit balance and plan tier."""

    credits: int
    plan: Plan

    @property
    def unlimited(self) -> bool:
        """Paid tiers are metered but never decremented."""
        return self.plan != Plan.FREE

    def can_afford(self, amount: int) -> bool:
        """Whether a message costing ``amount`` may be attempted."""
        return self.unlimited or self.credits >= amount


@dataclass(frozen=True)
class ProfileData:
    """Immutable profile snapshot."""

    user_id: UUID
    email: str | None
    plan: Plan
    credits: int
    monthly_project_creations: int
    import_count: int
    created_at: datetime
    updated_at: datetime

    @property
    def balance(self) -> Balance:
        """Balance view of the profile."""
        return Balance(credits=self.credits, plan=self.plan)


@dataclass(frozen=True)
class ProviderSecret:
    """Decrypted provider key with its observed validity."""

    provider: ModelFamily
    api_key: str
    is_valid: bool


@dataclass(frozen=True)
class SecretSummary:
    """Listing entry for a stored provider key (never the key)."""

    provider: ModelFamily
    is_valid: bool
    created_at: datetime


@dataclass(frozen=True)
class VerifiedSession:
    """Redeemable session token minted after OTP verification."""

    token: str
    email: str


@dataclass(frozen=True)
class OtpChallenge:
    """Stored one-time code challenge. Holds only the salted hash of the code."""

    id: UUID
    email: str
    otp_hash: str
    salt: str
    attempts: int
    used: bool
    created_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class ImportedLine:
    """One message of an imported conversation, role kept as exported."""

    role: str
    content: str


@dataclass(frozen=True)
class ImportedThread:
    """A stored import with its messages in original order."""

    chat_id: UUID
    user_id: UUID
    title: str
    provider: str
    source_url: str
    summary_short: str
    metadata: dict[str, Any]
    created_at: datetime
    messages: tuple[ImportedLine, ...]
