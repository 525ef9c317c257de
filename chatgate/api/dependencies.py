"""
FastAPI Dependencies - Authentication and service wiring.

Every collaborator a route needs is built here, so tests can swap any of
them with app.dependency_overrides.
"""

from functools import lru_cache

import httpx
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from chatgate.config import settings
from chatgate.db.session import get_write_db
from chatgate.exceptions import UnauthorizedError
from chatgate.models.api import ModelFamily
from chatgate.models.domain import AuthenticatedUser
from chatgate.services.crypto import CryptoBox
from chatgate.services.email import MailtrapEmailSender
from chatgate.services.gateway import ChatGateway
from chatgate.services.identity import SessionMinter, SupabaseIdentityProvider
from chatgate.services.imports import ChatImporter
from chatgate.services.ledger import CreditLedger
from chatgate.services.otp import OtpAuthBridge, SqlOtpRepository
from chatgate.services.providers import MODEL_CATALOG, ProviderAdapter, build_adapters
from chatgate.services.secret_store import SecretStore

# Bearer token scheme; missing headers are reported as UnauthorizedError
bearer_scheme = HTTPBearer(auto_error=False)

# Shared outbound HTTP client, closed on shutdown
_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient()
    return _http_client


async def close_http_client() -> None:
    """Close the shared HTTP client (for graceful shutdown)."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


@lru_cache
def get_crypto_box() -> CryptoBox:
    """One CryptoBox per process, built from the validated master key."""
    return CryptoBox(settings.master_key)


def get_provider_adapters() -> dict[ModelFamily, ProviderAdapter]:
    return build_adapters(get_http_client(), settings.provider_timeout_seconds)


def get_identity_provider() -> SupabaseIdentityProvider:
    return SupabaseIdentityProvider(
        settings.supabase_url,
        settings.supabase_service_role_key,
        http_client=get_http_client(),
    )


def get_email_sender() -> MailtrapEmailSender:
    return MailtrapEmailSender(
        settings.mailtrap_api_token,
        settings.mailtrap_sender_email,
        settings.mailtrap_sender_name,
        http_client=get_http_client(),
    )


async def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """
    Extract the raw bearer token.

    Raises:
        UnauthorizedError: No Authorization header
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing Authorization header")
    return credentials.credentials


async def get_current_user(
    token: str = Depends(get_access_token),
    identity: SupabaseIdentityProvider = Depends(get_identity_provider),
) -> AuthenticatedUser:
    """
    Resolve the bearer token to a user via the identity provider.

    Usage:
        @router.get("/v1/credits")
        async def credits(user: AuthenticatedUser = Depends(get_current_user)):
            ...
    """
    return await identity.get_user(token)


def get_ledger(db: AsyncSession = Depends(get_write_db)) -> CreditLedger:
    return CreditLedger(
        db,
        starting_credits=settings.starting_credits,
        free_project_limit=settings.free_project_limit,
        free_import_limit=settings.free_import_limit,
    )


def get_secret_store(
    db: AsyncSession = Depends(get_write_db),
    crypto: CryptoBox = Depends(get_crypto_box),
) -> SecretStore:
    return SecretStore(db, crypto)


def get_chat_importer(
    db: AsyncSession = Depends(get_write_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> ChatImporter:
    # Same request-scoped session as the ledger, so the quota bump shares the import transaction
    return ChatImporter(db, ledger)


def get_chat_gateway(
    identity: SupabaseIdentityProvider = Depends(get_identity_provider),
    ledger: CreditLedger = Depends(get_ledger),
    secrets: SecretStore = Depends(get_secret_store),
    adapters: dict[ModelFamily, ProviderAdapter] = Depends(get_provider_adapters),
) -> ChatGateway:
    return ChatGateway(
        identity=identity,
        ledger=ledger,
        secrets=secrets,
        adapters=adapters,
        catalog=MODEL_CATALOG,
        fallback_keys=settings.fallback_api_keys,
        cost_per_message=settings.cost_per_message,
    )


def get_otp_bridge(
    db: AsyncSession = Depends(get_write_db),
    email_sender: MailtrapEmailSender = Depends(get_email_sender),
    identity: SupabaseIdentityProvider = Depends(get_identity_provider),
) -> OtpAuthBridge:
    return OtpAuthBridge(
        repository=SqlOtpRepository(db),
        email_sender=email_sender,
        minter=SessionMinter(identity),
        cooldown_seconds=settings.otp_cooldown_seconds,
        expiry_minutes=settings.otp_expiry_minutes,
        max_attempts=settings.otp_max_attempts,
    )
