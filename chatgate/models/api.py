"""
API Models - Pydantic models for request/response validation.

Field names follow the camelCase contract the web client already speaks.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Plan(str, Enum):
    """Subscription plan enumeration."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class ModelFamily(str, Enum):
    """Upstream model provider families."""

    GEMINI = "gemini"
    OPENAI = "openai"
    PERPLEXITY = "perplexity"
    HUGGINGFACE = "huggingface"


class ChatRole(str, Enum):
    """Roles accepted in chat history. MODEL is the web client's name for ASSISTANT."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    MODEL = "model"


class CamelModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Chat Models
# ============================================================================


class ChatMessageIn(CamelModel):
    """One history entry as sent by the client."""

    role: ChatRole
    content: str = Field(..., max_length=200_000)


class ChatRequest(CamelModel):
    """POST /v1/chat request body."""

    messages: list[ChatMessageIn] = Field(..., min_length=1)
    model_id: str = Field(..., alias="modelId", min_length=1, max_length=100)
    project_id: str = Field(..., alias="projectId", min_length=1, max_length=255)
    api_key: str | None = Field(None, alias="apiKey", max_length=1024)

    @field_validator("messages")
    @classmethod
    def validate_last_message_is_prompt(cls, v: list[ChatMessageIn]) -> list[ChatMessageIn]:
        """The final message is the new prompt and must come from the user."""
        if v[-1].role != ChatRole.USER:
            raise ValueError("last message must have role 'user'")
        if not v[-1].content.strip():
            raise ValueError("prompt cannot be empty")
        return v


class ChatResponse(CamelModel):
    """POST /v1/chat response."""

    ok: bool = True
    result: str
    credits_remaining: int = Field(..., alias="creditsRemaining")


# ============================================================================
# Profile / Credit Models
# ============================================================================


class CreditsResponse(BaseModel):
    """GET /v1/credits response."""

    credits_remaining: int
    subscription_tier: Plan


class ProfileResponse(CamelModel):
    """GET /v1/profile response."""

    user_id: str = Field(..., alias="userId")
    email: str | None = None
    plan: Plan
    credits: int
    unlimited: bool
    monthly_project_creations: int = Field(..., alias="monthlyProjectCreations")
    import_count: int = Field(..., alias="importCount")
    providers_with_keys: list[ModelFamily] = Field(..., alias="providersWithKeys")


class ProjectCreationResponse(CamelModel):
    """POST /v1/profile/project-creations response."""

    ok: bool = True
    monthly_project_creations: int = Field(..., alias="monthlyProjectCreations")


# ============================================================================
# Chat Import Models
# ============================================================================


class ImportedMessageIn(CamelModel):
    """One message of a conversation exported from another assistant."""

    role: str = Field(..., min_length=1, max_length=32)
    content: str = Field(..., max_length=200_000)


class ImportConfirmRequest(CamelModel):
    """POST /v1/imports request body."""

    messages: list[ImportedMessageIn] = Field(..., min_length=1, max_length=5_000)
    title: str = Field("Imported Chat", min_length=1, max_length=500)
    provider: str = Field("other", min_length=1, max_length=32)
    source_url: str = Field("", alias="sourceUrl", max_length=2_048)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ImportConfirmResponse(CamelModel):
    """POST /v1/imports response."""

    ok: bool = True
    chat_id: UUID = Field(..., alias="chatId")
    import_count: int = Field(..., alias="importCount")


class ImportedMessageOut(CamelModel):
    role: str
    content: str


class ImportedChatResponse(CamelModel):
    """GET /v1/imports/{chat_id} response."""

    chat_id: UUID = Field(..., alias="chatId")
    title: str
    provider: str
    source_url: str = Field(..., alias="sourceUrl")
    summary: str
    metadata: dict[str, Any]
    created_at: datetime = Field(..., alias="createdAt")
    messages: list[ImportedMessageOut]


# ============================================================================
# Provider Key Models
# ============================================================================


class SaveKeyRequest(CamelModel):
    """POST /v1/keys request body."""

    provider: ModelFamily
    api_key: str = Field(..., alias="apiKey", min_length=1, max_length=1024)

    @field_validator("api_key")
    @classmethod
    def strip_api_key(cls, v: str) -> str:
        """Reject whitespace-only keys."""
        v = v.strip()
        if not v:
            raise ValueError("apiKey cannot be blank")
        return v


class DeleteKeyRequest(CamelModel):
    """DELETE /v1/keys request body."""

    provider: ModelFamily


class KeyItem(CamelModel):
    """One provider with a key on file. Never carries the key itself."""

    provider: ModelFamily
    is_valid: bool = Field(..., alias="isValid")
    created_at: str = Field(..., alias="createdAt")


class KeyListResponse(CamelModel):
    """GET /v1/keys response."""

    keys: list[KeyItem]


class OkResponse(CamelModel):
    """Generic acknowledgement."""

    ok: bool = True


# ============================================================================
# OTP Models
# ============================================================================


class OtpSendRequest(CamelModel):
    """POST /v1/auth/otp/send request body."""

    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Trim and lower-case; require a single @ with both sides present."""
        v = v.strip().lower()
        local, sep, domain = v.partition("@")
        if not sep or not local or not domain or "@" in domain:
            raise ValueError("invalid email address")
        return v


class OtpVerifyRequest(OtpSendRequest):
    """POST /v1/auth/otp/verify request body."""

    otp: str = Field(..., min_length=1, max_length=12)


class OtpVerifyResponse(CamelModel):
    """POST /v1/auth/otp/verify response."""

    ok: bool = True
    token: str
    email: str


# ============================================================================
# Errors / Health
# ============================================================================


class ErrorResponse(CamelModel):
    """Error envelope for every ChatGateError."""

    error: str
    kind: str
    retry_after_seconds: int | None = Field(None, alias="retryAfterSeconds")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    timestamp: str
