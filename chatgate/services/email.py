"""
Email Sender - Transactional delivery of one-time codes via Mailtrap.
"""

from typing import Protocol

import httpx
from structlog import get_logger

from chatgate.exceptions import EmailDeliveryError
from chatgate.observability.logging import redact_email

logger = get_logger(__name__)


class EmailSender(Protocol):
    async def send_otp(self, to: str, code: str) -> None:
        """Deliver ``code`` to ``to``. Raises EmailDeliveryError on any failure."""
        ...


class MailtrapEmailSender:
    """Mailtrap Email Sending API client."""

    SEND_URL = "https://send.api.mailtrap.io/api/send"
    SUBJECT = "Your verification code"

    def __init__(
        self,
        api_token: str,
        sender_email: str,
        sender_name: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.api_token = api_token
        self.sender_email = sender_email
        self.sender_name = sender_name
        self._http_client = http_client
        self.timeout = timeout

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def send_otp(self, to: str, code: str) -> None:
        if not self.api_token:
            logger.error("mailtrap_token_missing")
            raise EmailDeliveryError("email provider not configured")

        payload = {
            "from": {"email": self.sender_email, "name": self.sender_name},
            "to": [{"email": to}],
            "subject": self.SUBJECT,
            "text": f"Your OTP is {code}",
        }
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self.http_client.post(
                self.SEND_URL, headers=headers, json=payload, timeout=self.timeout
            )
        except httpx.HTTPError as e:
            logger.error(
                "mailtrap_transport_error", to=redact_email(to), error_type=type(e).__name__
            )
            raise EmailDeliveryError(f"transport error: {type(e).__name__}") from e

        if not response.is_success:
            logger.error(
                "mailtrap_send_failed", to=redact_email(to), status_code=response.status_code
            )
            raise EmailDeliveryError(f"Mailtrap returned {response.status_code}")

        logger.info("otp_email_sent", to=redact_email(to))
