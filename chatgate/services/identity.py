"""
Identity Provider - Supabase GoTrue over plain HTTP.

Resolves bearer tokens to users and, for the OTP flow, mints a redeemable
magic-link token the web client exchanges for a session.
"""

from typing import Any, Protocol
from urllib.parse import parse_qs, urlparse
from uuid import UUID

import httpx
from structlog import get_logger

from chatgate.exceptions import IdentityProviderError, UnauthorizedError
from chatgate.models.domain import AuthenticatedUser
from chatgate.observability.logging import redact_email

logger = get_logger(__name__)


class IdentityProvider(Protocol):
    """What the gateway needs from the identity provider."""

    async def get_user(self, access_token: str) -> AuthenticatedUser:
        """Raises UnauthorizedError if the token is not accepted."""
        ...


class SupabaseIdentityProvider:
    """GoTrue REST client authenticated with the service role key."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self._http_client = http_client
        self.timeout = timeout

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    def _admin_headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
        }

    async def get_user(self, access_token: str) -> AuthenticatedUser:
        if not access_token:
            raise UnauthorizedError()

        headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {access_token}",
        }
        try:
            response = await self.http_client.get(
                f"{self.base_url}/auth/v1/user", headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as e:
            logger.warning("identity_lookup_transport_error", error_type=type(e).__name__)
            raise UnauthorizedError() from e

        if response.status_code != 200:
            logger.info("identity_lookup_rejected", status_code=response.status_code)
            raise UnauthorizedError()

        try:
            data = response.json()
            user_id = UUID(data["id"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("identity_lookup_malformed")
            raise UnauthorizedError() from e

        return AuthenticatedUser(user_id=user_id, email=data.get("email"))

    async def ensure_user(self, email: str) -> None:
        """Create a confirmed user. An already-registered email is not an error."""
        payload = {
            "email": email,
            "email_confirm": True,
            "user_metadata": {"email_verified": True},
        }
        response = await self._admin_post("/auth/v1/admin/users", payload)

        if response.status_code in (200, 201):
            logger.info("identity_user_created", email=redact_email(email))
            return
        if response.status_code == 422 or "already" in response.text.lower():
            logger.debug("identity_user_exists", email=redact_email(email))
            return

        logger.error(
            "identity_user_create_failed",
            email=redact_email(email),
            status_code=response.status_code,
        )
        raise IdentityProviderError(f"create user failed ({response.status_code})")

    async def generate_magic_link(self, email: str) -> dict[str, Any]:
        """Issue a magic link without sending it. Returns the link properties."""
        response = await self._admin_post(
            "/auth/v1/admin/generate_link", {"type": "magiclink", "email": email}
        )
        if response.status_code != 200:
            logger.error(
                "identity_generate_link_failed",
                email=redact_email(email),
                status_code=response.status_code,
            )
            raise IdentityProviderError(f"generate link failed ({response.status_code})")

        try:
            data = response.json()
        except ValueError as e:
            raise IdentityProviderError("generate link returned non-JSON body") from e
        if not isinstance(data, dict):
            raise IdentityProviderError("generate link returned unexpected body")

        # Older GoTrue releases nest the link fields under "properties"
        properties = data.get("properties")
        return properties if isinstance(properties, dict) else data

    async def _admin_post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            return await self.http_client.post(
                f"{self.base_url}{path}",
                headers=self._admin_headers(),
                json=payload,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error("identity_admin_transport_error", path=path, error_type=type(e).__name__)
            raise IdentityProviderError(f"transport error: {type(e).__name__}") from e


class SessionMinter:
    """Turns a verified email into a token the client can redeem for a session."""

    def __init__(self, identity: SupabaseIdentityProvider) -> None:
        self.identity = identity

    async def mint(self, email: str) -> str:
        """
        Ensure the user exists and return a magic-link token.

        Prefers the explicit hashed_token field and falls back to the token
        query parameter of action_link.

        Raises:
            IdentityProviderError: The provider refused or returned no token
        """
        await self.identity.ensure_user(email)
        link = await self.identity.generate_magic_link(email)

        token = link.get("hashed_token")
        if isinstance(token, str) and token:
            return token

        action_link = link.get("action_link")
        if isinstance(action_link, str):
            values = parse_qs(urlparse(action_link).query).get("token")
            if values and values[0]:
                return values[0]

        logger.error("session_token_missing", email=redact_email(email))
        raise IdentityProviderError("Failed to generate access token")
