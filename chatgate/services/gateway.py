"""
Chat Gateway - Authenticate, check balance, dispatch, charge, respond.

A user is billed if and only if a usable reply was produced. The debit
happens after the provider answers; any failure before that point leaves
the balance untouched, and a debit that loses a race withholds the reply.
"""

import time
from collections.abc import Mapping
from uuid import UUID

from structlog import get_logger

from chatgate.exceptions import (
    ChatGateError,
    InsufficientCreditsError,
    InvalidCredentialError,
    MissingCredentialError,
)
from chatgate.models.api import ModelFamily
from chatgate.models.domain import ChatResult, ChatTurn, ModelSpec, ProviderSecret
from chatgate.observability.metrics import metrics
from chatgate.observability.tracing import trace_operation
from chatgate.services.identity import IdentityProvider
from chatgate.services.ledger import COST_PER_MESSAGE, CreditLedger
from chatgate.services.providers import (
    MODEL_CATALOG,
    PROVIDER_DISPLAY_NAMES,
    ProviderAdapter,
    resolve_model,
    validate_registry,
)
from chatgate.services.secret_store import SecretStore

logger = get_logger(__name__)


class ChatGateway:
    """Runs one chat turn end to end."""

    def __init__(
        self,
        identity: IdentityProvider,
        ledger: CreditLedger,
        secrets: SecretStore,
        adapters: Mapping[ModelFamily, ProviderAdapter],
        catalog: Mapping[str, ModelSpec] = MODEL_CATALOG,
        fallback_keys: Mapping[str, str] | None = None,
        cost_per_message: int = COST_PER_MESSAGE,
    ) -> None:
        validate_registry(adapters, catalog)
        self.identity = identity
        self.ledger = ledger
        self.secrets = secrets
        self.adapters = adapters
        self.catalog = catalog
        self.fallback_keys = dict(fallback_keys or {})
        self.cost_per_message = cost_per_message

    async def invoke(self, access_token: str, turn: ChatTurn) -> ChatResult:
        """
        Execute a chat turn for the caller behind ``access_token``.

        Raises:
            UnauthorizedError: Token rejected
            InsufficientCreditsError: Free balance too low, before or at charge time
            UnsupportedModelError: Model id not in the catalog
            MissingCredentialError: No caller, stored or shared key for the family
            ProviderError: Any classified upstream failure
            DecryptError: Stored key could not be decrypted
        """
        provider_label = "none"
        try:
            user = await self.identity.get_user(access_token)
            log = logger.bind(user_id=str(user.user_id), model_id=turn.model_id)
            log.debug("chat_authenticated")

            balance = await self.ledger.get_balance(user.user_id, user.email)
            if not balance.can_afford(self.cost_per_message):
                log.info(
                    "chat_rejected_insufficient_credits",
                    balance=balance.credits,
                    required=self.cost_per_message,
                )
                raise InsufficientCreditsError(
                    balance=balance.credits, required=self.cost_per_message
                )

            spec = resolve_model(turn.model_id, self.catalog)
            provider_label = spec.family.value
            api_key, stored = await self._resolve_credential(
                user.user_id, spec.family, turn.api_key
            )

            log.info(
                "chat_dispatching",
                provider=spec.family.value,
                key_source=self._key_source(turn.api_key, stored),
            )
            text = await self._dispatch(user.user_id, spec, turn, api_key, stored)

            if balance.unlimited:
                remaining = balance.credits
            else:
                try:
                    remaining = await self.ledger.charge(user.user_id, self.cost_per_message)
                except InsufficientCreditsError:
                    log.warning("chat_reply_withheld_charge_failed")
                    raise

            log.info(
                "chat_turn_completed",
                provider=spec.family.value,
                charged=not balance.unlimited,
                credits_remaining=remaining,
            )
            metrics.record_chat_turn(provider_label, "success")
            return ChatResult(
                text=text,
                credits_remaining=remaining,
                model_id=turn.model_id,
                provider=spec.family,
            )
        except ChatGateError as e:
            metrics.record_chat_turn(provider_label, e.kind)
            raise

    async def _resolve_credential(
        self, user_id: UUID, family: ModelFamily, caller_key: str | None
    ) -> tuple[str, ProviderSecret | None]:
        """Caller key, then stored key, then shared fallback key."""
        if caller_key:
            return caller_key, None

        stored = await self.secrets.get(user_id, family)
        if stored is not None:
            return stored.api_key, stored

        fallback = self.fallback_keys.get(family.value)
        if fallback:
            return fallback, None

        raise MissingCredentialError(PROVIDER_DISPLAY_NAMES[family])

    async def _dispatch(
        self,
        user_id: UUID,
        spec: ModelSpec,
        turn: ChatTurn,
        api_key: str,
        stored: ProviderSecret | None,
    ) -> str:
        adapter = self.adapters[spec.family]
        started = time.perf_counter()
        try:
            with trace_operation(
                "provider_call", provider=spec.family.value, model=spec.upstream_model
            ):
                text = await adapter.chat(turn.history, turn.prompt, api_key, spec.upstream_model)
        except InvalidCredentialError:
            if stored is not None:
                await self.secrets.mark_validity(user_id, spec.family, False)
            raise
        finally:
            metrics.record_provider_call(spec.family.value, time.perf_counter() - started)

        if stored is not None and not stored.is_valid:
            await self.secrets.mark_validity(user_id, spec.family, True)
        return text

    @staticmethod
    def _key_source(caller_key: str | None, stored: ProviderSecret | None) -> str:
        if caller_key:
            return "caller"
        if stored is not None:
            return "stored"
        return "shared"
