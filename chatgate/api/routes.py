"""
API Routes - FastAPI endpoints for chat, credits, imports, keys and OTP sign-in.

Service exceptions propagate to the ChatGateError handler in main, which
renders the {error, kind} envelope.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from chatgate.api.dependencies import (
    get_access_token,
    get_chat_gateway,
    get_chat_importer,
    get_current_user,
    get_ledger,
    get_otp_bridge,
    get_secret_store,
)
from chatgate.db.session import get_read_db
from chatgate.models.api import (
    ChatRequest,
    ChatResponse,
    CreditsResponse,
    DeleteKeyRequest,
    HealthResponse,
    ImportConfirmRequest,
    ImportConfirmResponse,
    ImportedChatResponse,
    ImportedMessageOut,
    KeyItem,
    KeyListResponse,
    OkResponse,
    OtpSendRequest,
    OtpVerifyRequest,
    OtpVerifyResponse,
    ProfileResponse,
    ProjectCreationResponse,
    SaveKeyRequest,
)
from chatgate.models.domain import AuthenticatedUser, ChatTurn, ImportedLine
from chatgate.services.gateway import ChatGateway
from chatgate.services.imports import ChatImporter
from chatgate.services.ledger import CreditLedger
from chatgate.services.otp import OtpAuthBridge
from chatgate.services.secret_store import SecretStore

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Chat
# =============================================================================


@router.post("/v1/chat", response_model=ChatResponse, response_model_by_alias=True)
async def chat(
    request: ChatRequest,
    token: str = Depends(get_access_token),
    gateway: ChatGateway = Depends(get_chat_gateway),
) -> ChatResponse:
    """
    Run one chat turn and charge for it.

    The caller is charged only when the provider produced a reply.
    """
    result = await gateway.invoke(token, ChatTurn.from_request(request))
    return ChatResponse(result=result.text, credits_remaining=result.credits_remaining)


# =============================================================================
# Credits / Profile
# =============================================================================


@router.get("/v1/credits", response_model=CreditsResponse)
async def get_credits(
    user: AuthenticatedUser = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditsResponse:
    """Balance and plan. Provisions a free profile on first call."""
    balance = await ledger.get_balance(user.user_id, user.email)
    return CreditsResponse(credits_remaining=balance.credits, subscription_tier=balance.plan)


@router.get("/v1/profile", response_model=ProfileResponse, response_model_by_alias=True)
async def get_profile(
    user: AuthenticatedUser = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
    secrets: SecretStore = Depends(get_secret_store),
) -> ProfileResponse:
    profile = await ledger.get_profile(user.user_id, user.email)
    summaries = await secrets.list_providers(user.user_id)
    return ProfileResponse(
        user_id=str(profile.user_id),
        email=profile.email,
        plan=profile.plan,
        credits=profile.credits,
        unlimited=profile.balance.unlimited,
        monthly_project_creations=profile.monthly_project_creations,
        import_count=profile.import_count,
        providers_with_keys=[s.provider for s in summaries],
    )


@router.post(
    "/v1/profile/project-creations",
    response_model=ProjectCreationResponse,
    response_model_by_alias=True,
)
async def record_project_creation(
    user: AuthenticatedUser = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> ProjectCreationResponse:
    """Count a project creation against the free-plan limit."""
    count = await ledger.record_project_creation(user.user_id)
    return ProjectCreationResponse(monthly_project_creations=count)


# =============================================================================
# Chat Imports
# =============================================================================


@router.post("/v1/imports", response_model=ImportConfirmResponse, response_model_by_alias=True)
async def confirm_import(
    request: ImportConfirmRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    importer: ChatImporter = Depends(get_chat_importer),
) -> ImportConfirmResponse:
    """Store an imported conversation and count it against the free-plan limit."""
    chat_id, count = await importer.confirm(
        user.user_id,
        [ImportedLine(role=m.role, content=m.content) for m in request.messages],
        title=request.title,
        provider=request.provider,
        source_url=request.source_url,
        metadata=request.metadata,
    )
    return ImportConfirmResponse(chat_id=chat_id, import_count=count)


@router.get(
    "/v1/imports/{chat_id}", response_model=ImportedChatResponse, response_model_by_alias=True
)
async def get_import(
    chat_id: UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    importer: ChatImporter = Depends(get_chat_importer),
) -> ImportedChatResponse:
    thread = await importer.get_thread(user.user_id, chat_id)
    return ImportedChatResponse(
        chat_id=thread.chat_id,
        title=thread.title,
        provider=thread.provider,
        source_url=thread.source_url,
        summary=thread.summary_short,
        metadata=thread.metadata,
        created_at=thread.created_at,
        messages=[ImportedMessageOut(role=m.role, content=m.content) for m in thread.messages],
    )


# =============================================================================
# Provider Keys
# =============================================================================


@router.get("/v1/keys", response_model=KeyListResponse, response_model_by_alias=True)
async def list_keys(
    user: AuthenticatedUser = Depends(get_current_user),
    secrets: SecretStore = Depends(get_secret_store),
) -> KeyListResponse:
    """Providers with a stored key. Keys themselves are never returned."""
    summaries = await secrets.list_providers(user.user_id)
    return KeyListResponse(
        keys=[
            KeyItem(
                provider=s.provider,
                is_valid=s.is_valid,
                created_at=s.created_at.isoformat(),
            )
            for s in summaries
        ]
    )


@router.post("/v1/keys", response_model=OkResponse)
async def save_key(
    request: SaveKeyRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    secrets: SecretStore = Depends(get_secret_store),
) -> OkResponse:
    """Encrypt and store a provider key, replacing any previous one."""
    await secrets.put(user.user_id, request.provider, request.api_key)
    return OkResponse()


@router.delete("/v1/keys", response_model=OkResponse)
async def delete_key(
    request: DeleteKeyRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    secrets: SecretStore = Depends(get_secret_store),
) -> OkResponse:
    await secrets.delete(user.user_id, request.provider)
    return OkResponse()


# =============================================================================
# OTP Sign-in
# =============================================================================


@router.post("/v1/auth/otp/send", response_model=OkResponse)
async def send_otp(
    request: OtpSendRequest,
    bridge: OtpAuthBridge = Depends(get_otp_bridge),
) -> OkResponse:
    await bridge.send(request.email)
    return OkResponse()


@router.post("/v1/auth/otp/verify", response_model=OtpVerifyResponse)
async def verify_otp(
    request: OtpVerifyRequest,
    bridge: OtpAuthBridge = Depends(get_otp_bridge),
) -> OtpVerifyResponse:
    """Redeem a code for a magic-link token the client exchanges for a session."""
    session = await bridge.verify(request.email, request.otp)
    return OtpVerifyResponse(token=session.token, email=session.email)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error_type=type(exc).__name__)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
