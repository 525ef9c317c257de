"""
Provider Adapters - One upstream chat completion per call.

Each adapter turns (history, prompt) into its provider's wire format, makes
exactly one HTTP request with a bounded timeout, classifies the status and
pulls the reply text out of the provider's envelope. Adapters never touch
credits or stored secrets.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import httpx
from structlog import get_logger

from chatgate.exceptions import (
    ConfigError,
    InvalidCredentialError,
    MalformedResponseError,
    MissingCredentialError,
    PaymentRequiredError,
    RateLimitedError,
    UnsupportedModelError,
    UpstreamError,
)
from chatgate.models.api import ChatRole, ModelFamily
from chatgate.models.domain import ChatMessage, ModelSpec

logger = get_logger(__name__)

# Upstream error bodies are echoed back to callers, but only this much of them
MAX_ERROR_DETAIL_CHARS = 500


MODEL_CATALOG: dict[str, ModelSpec] = {
    "gemini-2.5-flash": ModelSpec(ModelFamily.GEMINI, "gemini-2.5-flash"),
    "gemini-3-pro-preview": ModelSpec(ModelFamily.GEMINI, "gemini-3-pro-preview"),
    "gemini-1.5-pro": ModelSpec(ModelFamily.GEMINI, "gemini-1.5-pro"),
    "gemini-pro": ModelSpec(ModelFamily.GEMINI, "gemini-pro"),
    "gpt-4o": ModelSpec(ModelFamily.OPENAI, "gpt-4o"),
    "gpt-4o-mini": ModelSpec(ModelFamily.OPENAI, "gpt-4o-mini"),
    "perplexity-sonar": ModelSpec(ModelFamily.PERPLEXITY, "sonar"),
    "mistral-7b": ModelSpec(
        ModelFamily.HUGGINGFACE, "mistralai/Mistral-7B-Instruct-v0.2:featherless-ai"
    ),
    "qwen-7b": ModelSpec(ModelFamily.HUGGINGFACE, "Qwen/Qwen3-8B:nscale"),
    "qwen-14b": ModelSpec(ModelFamily.HUGGINGFACE, "Qwen/Qwen3-14B:nscale"),
    "llama-3.1-8b": ModelSpec(
        ModelFamily.HUGGINGFACE, "meta-llama/Llama-3.1-8B-Instruct:sambanova"
    ),
    "deepseek-r1": ModelSpec(ModelFamily.HUGGINGFACE, "deepseek-ai/DeepSeek-R1:novita"),
}

PROVIDER_DISPLAY_NAMES: dict[ModelFamily, str] = {
    ModelFamily.GEMINI: "Gemini",
    ModelFamily.OPENAI: "OpenAI",
    ModelFamily.PERPLEXITY: "Perplexity",
    ModelFamily.HUGGINGFACE: "HuggingFace",
}


def resolve_model(model_id: str, catalog: Mapping[str, ModelSpec] = MODEL_CATALOG) -> ModelSpec:
    """Look up a public model id. Unknown ids are rejected, never defaulted."""
    spec = catalog.get(model_id)
    if spec is None:
        raise UnsupportedModelError(model_id)
    return spec


class ProviderAdapter(Protocol):
    """Interface every provider family implements."""

    family: ModelFamily

    async def chat(
        self,
        history: Sequence[ChatMessage],
        prompt: str,
        api_key: str | None,
        upstream_model: str,
    ) -> str:
        """
        Produce one assistant reply.

        Raises:
            MissingCredentialError: No api_key given
            InvalidCredentialError: Upstream answered 401 or 403
            RateLimitedError: Upstream answered 429
            PaymentRequiredError: Upstream answered 402
            UpstreamError: Other non-2xx, timeout or transport failure
            MalformedResponseError: 2xx without reply text
        """
        ...


def _truncate(text: str) -> str:
    if len(text) <= MAX_ERROR_DETAIL_CHARS:
        return text
    return text[:MAX_ERROR_DETAIL_CHARS] + "..."


class HttpProviderAdapter:
    """Shared request/classification plumbing. Subclasses describe the wire format."""

    family: ModelFamily
    endpoint: str

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._http_client = http_client
        self.timeout = timeout

    @property
    def display_name(self) -> str:
        return PROVIDER_DISPLAY_NAMES[self.family]

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    def build_request(
        self,
        history: Sequence[ChatMessage],
        prompt: str,
        api_key: str,
        upstream_model: str,
    ) -> tuple[str, dict[str, str], dict[str, str], dict[str, Any]]:
        """Return (url, headers, query params, json body)."""
        raise NotImplementedError

    def extract_text(self, data: Any) -> str | None:
        raise NotImplementedError

    async def chat(
        self,
        history: Sequence[ChatMessage],
        prompt: str,
        api_key: str | None,
        upstream_model: str,
    ) -> str:
        if not api_key:
            raise MissingCredentialError(self.display_name)

        url, headers, params, body = self.build_request(history, prompt, api_key, upstream_model)

        try:
            response = await self.http_client.post(
                url, headers=headers, params=params, json=body, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "provider_timeout", provider=self.family.value, model=upstream_model
            )
            raise UpstreamError(self.display_name, "request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(
                "provider_transport_error",
                provider=self.family.value,
                model=upstream_model,
                error_type=type(e).__name__,
            )
            raise UpstreamError(self.display_name, f"transport error: {type(e).__name__}") from e

        self._raise_for_status(response, upstream_model)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(self.display_name, "response was not JSON") from e

        text = self.extract_text(data)
        if not text:
            raise MalformedResponseError(self.display_name)
        return text

    def _raise_for_status(self, response: httpx.Response, upstream_model: str) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        detail = _truncate(response.text)
        logger.warning(
            "provider_error_status",
            provider=self.family.value,
            model=upstream_model,
            status_code=status,
        )

        if status in (401, 403):
            raise InvalidCredentialError(self.display_name, status)
        if status == 429:
            raise RateLimitedError(self.display_name, detail)
        if status == 402:
            raise PaymentRequiredError(self.display_name, detail)
        raise UpstreamError(self.display_name, detail, status_code=status)


class GeminiAdapter(HttpProviderAdapter):
    """Google Generative Language API (generateContent)."""

    family = ModelFamily.GEMINI
    endpoint = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def build_request(
        self,
        history: Sequence[ChatMessage],
        prompt: str,
        api_key: str,
        upstream_model: str,
    ) -> tuple[str, dict[str, str], dict[str, str], dict[str, Any]]:
        # Gemini has no system role in contents; system turns become systemInstruction
        system_parts = [{"text": m.content} for m in history if m.role == ChatRole.SYSTEM]
        contents = [
            {
                "role": "model" if m.is_assistant else "user",
                "parts": [{"text": m.content}],
            }
            for m in history
            if m.role != ChatRole.SYSTEM
        ]
        contents.append({"role": "user", "parts": [{"text": prompt}]})

        body: dict[str, Any] = {"contents": contents}
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}

        url = self.endpoint.format(model=upstream_model)
        return url, {"Content-Type": "application/json"}, {"key": api_key}, body

    def extract_text(self, data: Any) -> str | None:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            return None
        texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return "".join(texts) or None


class OpenAICompatibleAdapter(HttpProviderAdapter):
    """Chat Completions wire format shared by OpenAI, Perplexity and the HF router."""

    extra_body: dict[str, Any] = {}

    def build_request(
        self,
        history: Sequence[ChatMessage],
        prompt: str,
        api_key: str,
        upstream_model: str,
    ) -> tuple[str, dict[str, str], dict[str, str], dict[str, Any]]:
        messages = [
            {"role": self._normalize_role(m), "content": m.content} for m in history
        ]
        messages.append({"role": "user", "content": prompt})

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        body = {"model": upstream_model, "messages": messages, **self.extra_body}
        return self.endpoint, headers, {}, body

    @staticmethod
    def _normalize_role(message: ChatMessage) -> str:
        if message.role == ChatRole.SYSTEM:
            return "system"
        if message.is_assistant:
            return "assistant"
        return "user"

    def extract_text(self, data: Any) -> str | None:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None
        return content if isinstance(content, str) else None


class OpenAIAdapter(OpenAICompatibleAdapter):
    family = ModelFamily.OPENAI
    endpoint = "https://api.openai.com/v1/chat/completions"
    extra_body = {"max_tokens": 1000}


class PerplexityAdapter(OpenAICompatibleAdapter):
    family = ModelFamily.PERPLEXITY
    endpoint = "https://api.perplexity.ai/chat/completions"


class HuggingFaceAdapter(OpenAICompatibleAdapter):
    """HF inference router. Also understands the older text-generation shapes."""

    family = ModelFamily.HUGGINGFACE
    endpoint = "https://router.huggingface.co/v1/chat/completions"
    extra_body = {"max_tokens": 1024, "temperature": 0.7, "top_p": 0.95}

    def extract_text(self, data: Any) -> str | None:
        text = super().extract_text(data)
        if text:
            return text
        if isinstance(data, list) and data and isinstance(data[0], dict):
            generated = data[0].get("generated_text")
            return generated if isinstance(generated, str) else None
        if isinstance(data, dict):
            generated = data.get("generated_text")
            return generated if isinstance(generated, str) else None
        return None


ADAPTER_CLASSES: dict[ModelFamily, type[HttpProviderAdapter]] = {
    ModelFamily.GEMINI: GeminiAdapter,
    ModelFamily.OPENAI: OpenAIAdapter,
    ModelFamily.PERPLEXITY: PerplexityAdapter,
    ModelFamily.HUGGINGFACE: HuggingFaceAdapter,
}


def validate_registry(
    adapters: Mapping[ModelFamily, ProviderAdapter],
    catalog: Mapping[str, ModelSpec] = MODEL_CATALOG,
) -> None:
    """Every family, and every family the catalog routes to, must have an adapter."""
    missing = {family for family in ModelFamily if family not in adapters}
    missing |= {spec.family for spec in catalog.values() if spec.family not in adapters}
    if missing:
        names = ", ".join(sorted(f.value for f in missing))
        raise ConfigError(f"No provider adapter registered for: {names}")


def build_adapters(
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 60.0,
) -> dict[ModelFamily, ProviderAdapter]:
    """Instantiate one adapter per family sharing a single HTTP client."""
    adapters: dict[ModelFamily, ProviderAdapter] = {
        family: cls(http_client=http_client, timeout=timeout)
        for family, cls in ADAPTER_CLASSES.items()
    }
    validate_registry(adapters)
    return adapters
