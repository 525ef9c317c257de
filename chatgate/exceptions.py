"""
Exception Classes - Strongly typed exception hierarchy.

Every error carries a short machine-checkable ``kind`` and the HTTP status
the API layer renders it with.
"""


def _with_detail(message: str, detail: str) -> str:
    return f"{message}: {detail}" if detail else message


class ChatGateError(Exception):
    """Base exception for all gateway errors."""

    kind = "error"
    http_status = 400


# ============================================================================
# Authentication
# ============================================================================


class UnauthorizedError(ChatGateError):
    """Raised when the bearer credential is missing or rejected."""

    kind = "unauthorized"

    def __init__(self, message: str = "Unauthorized") -> None:
        self.message = message
        super().__init__(message)


class IdentityProviderError(ChatGateError):
    """Raised when an identity-provider admin call fails."""

    kind = "identity_provider_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Identity provider error: {message}")


# ============================================================================
# Secrets
# ============================================================================


class ConfigError(ChatGateError):
    """Raised when critical configuration is missing or malformed."""

    kind = "config_error"
    http_status = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DecryptError(ChatGateError):
    """Raised when an envelope fails authentication or cannot be parsed."""

    kind = "decrypt_error"
    http_status = 500

    def __init__(self, message: str = "Failed to decrypt secret") -> None:
        self.message = message
        super().__init__(message)


# ============================================================================
# Upstream providers
# ============================================================================


class ProviderError(ChatGateError):
    """Base class for classified upstream provider failures."""

    kind = "provider_error"

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(message)


class MissingCredentialError(ProviderError):
    """Raised when no API key is available for a provider."""

    kind = "missing_credential"

    def __init__(self, provider: str) -> None:
        super().__init__(
            provider,
            f"{provider} API key required. Please add it in Settings → API Keys.",
        )


class InvalidCredentialError(ProviderError):
    """Raised when the provider rejects the API key (401/403)."""

    kind = "invalid_credential"

    def __init__(self, provider: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(
            provider,
            f"Invalid {provider} API key ({status_code}). Please update your key in Settings.",
        )


class RateLimitedError(ProviderError):
    """Raised when the provider throttles the request (429)."""

    kind = "rate_limited"

    def __init__(self, provider: str, detail: str = "") -> None:
        self.detail = detail
        super().__init__(provider, _with_detail(f"{provider} rate limit exceeded", detail))


class PaymentRequiredError(ProviderError):
    """Raised when the provider account needs billing attention (402)."""

    kind = "payment_required"

    def __init__(self, provider: str, detail: str = "") -> None:
        self.detail = detail
        super().__init__(provider, _with_detail(f"{provider} payment required", detail))


class UpstreamError(ProviderError):
    """Raised for any other non-2xx status, timeout or transport failure."""

    kind = "upstream_error"

    def __init__(self, provider: str, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        prefix = f"{provider} API Error"
        if status_code is not None:
            prefix = f"{prefix} ({status_code})"
        super().__init__(provider, f"{prefix}: {detail}")


class MalformedResponseError(ProviderError):
    """Raised when a 2xx response lacks the expected text field."""

    kind = "malformed_response"

    def __init__(self, provider: str, detail: str = "missing reply text") -> None:
        self.detail = detail
        super().__init__(provider, f"Malformed {provider} response: {detail}")


# ============================================================================
# Credits
# ============================================================================


class InsufficientCreditsError(ChatGateError):
    """Raised when a free-tier balance cannot cover the message cost."""

    kind = "insufficient_credits"

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient credits. Balance: {balance}, Required: {required}. "
            "Please upgrade to Pro."
        )


class QuotaExceededError(ChatGateError):
    """Raised when a free-tier counter reaches its limit."""

    kind = "quota_exceeded"

    def __init__(self, counter: str, limit: int) -> None:
        self.counter = counter
        self.limit = limit
        super().__init__(f"Free plan limit reached for {counter} ({limit}). Upgrade to Pro.")


class UnsupportedModelError(ChatGateError):
    """Raised when a model id is not in the catalog."""

    kind = "unsupported_model"

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(f"Unsupported model: {model_id}")


class ProfileNotFoundError(ChatGateError):
    """Raised when an administrative operation targets a missing profile."""

    kind = "profile_not_found"

    def __init__(self, user_id: object) -> None:
        self.user_id = user_id
        super().__init__(f"Profile not found: {user_id}")


class ImportNotFoundError(ChatGateError):
    """Raised when an imported chat does not exist or belongs to someone else."""

    kind = "import_not_found"
    http_status = 404

    def __init__(self, chat_id: object) -> None:
        self.chat_id = chat_id
        super().__init__(f"Imported chat not found: {chat_id}")


# ============================================================================
# One-time passcodes
# ============================================================================


class CooldownError(ChatGateError):
    """Raised when a code was sent to the same email too recently."""

    kind = "cooldown"
    http_status = 429

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__("cooldown")


class InvalidOrExpiredError(ChatGateError):
    """Raised when no unexpired, unused challenge exists for the email."""

    kind = "invalid_or_expired"

    def __init__(self) -> None:
        super().__init__("Invalid or expired OTP")


class TooManyAttemptsError(ChatGateError):
    """Raised when the challenge has exhausted its attempts."""

    kind = "too_many_attempts"

    def __init__(self) -> None:
        super().__init__("Too many failed attempts. Please request a new OTP.")


class InvalidCodeError(ChatGateError):
    """Raised when the submitted code does not match the challenge."""

    kind = "invalid_code"

    def __init__(self, attempts_remaining: int) -> None:
        self.attempts_remaining = attempts_remaining
        super().__init__("Invalid OTP")


class EmailDeliveryError(ChatGateError):
    """Raised when the email collaborator fails to dispatch a message."""

    kind = "email_delivery_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Failed to send OTP email: {message}")
