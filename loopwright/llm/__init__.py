"""Chat providers - direct HTTP calls to chat-completion APIs."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from loopwright.exceptions import (
    ContextLengthExceededError,
    LLMError,
    RateLimitError,
    TransportError,
)
from loopwright.logging import get_logger
from loopwright.retry import retry_async

log = get_logger(__name__)


OPENAI_BASE_URL = "https://api.openai.com/v1"
OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"

MODEL_TOKEN_LIMITS: dict[str, int] = {
    "gpt-3.5-turbo": 4000,
    "gpt-4": 8000,
    "gpt-4-32k": 32000,
}
DEFAULT_TOKEN_LIMIT = 4000

ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Response from the chat model."""

    content: str
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)


def model_token_limit(model: str, override: int | None = None) -> int:
    """Context window for a model name, honoring an explicit override."""
    if override:
        return int(override)
    return MODEL_TOKEN_LIMITS.get(str(model or "").strip(), DEFAULT_TOKEN_LIMIT)


def is_rate_limited(error: BaseException) -> bool:
    return isinstance(error, RateLimitError)


class LLMProvider(ABC):
    """Abstract base class for chat providers."""

    model: str = ""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        pass

    @property
    def token_limit(self) -> int:
        return model_token_limit(self.model)


class _HTTPChatProvider(LLMProvider):
    """Shared plumbing for providers that POST JSON and retry on 429."""

    def __init__(
        self,
        model: str,
        base_url: str,
        temperature: float = 0.8,
        max_tokens: int = 1000,
        api_key: str | None = None,
        token_limit: int | None = None,
        timeout: float = 120.0,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 20.0,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._token_limit = token_limit
        self.retry_attempts = retry_attempts
        self.retry_delay_seconds = retry_delay_seconds

        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
        )

    @property
    def token_limit(self) -> int:
        return model_token_limit(self.model, self._token_limit)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    def _convert_messages(messages: list[Message]) -> list[dict[str, str]]:
        """Convert messages to wire format, dropping unknown roles."""
        result = []
        for msg in messages:
            if isinstance(msg, dict):
                role = msg.get("role")
                content = msg.get("content")
            else:
                role = getattr(msg, "role", None)
                content = getattr(msg, "content", None)
            if role in ROLES:
                result.append({"role": role, "content": content or ""})
        return result

    @staticmethod
    def _raise_for_error(response: httpx.Response, provider_label: str) -> None:
        """Map an error response to a TransportError with provider metadata intact."""
        error_type = None
        error_code = None
        message = response.text
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            error = payload["error"]
            message = str(error.get("message") or message)
            error_type = error.get("type")
            error_code = error.get("code")
        elif isinstance(payload, dict) and isinstance(payload.get("error"), str):
            message = payload["error"]

        text = f"{provider_label} API error {response.status_code}: {message}"
        if response.status_code == 429:
            raise RateLimitError(text, response.status_code, error_type, error_code)
        if error_code == "context_length_exceeded":
            raise ContextLengthExceededError(text, response.status_code, error_type, error_code)
        raise TransportError(text, response.status_code, error_type, error_code)

    async def complete(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion, retrying only on rate limiting."""
        return await retry_async(
            lambda: self._complete_once(messages, temperature, max_tokens),
            max_attempts=self.retry_attempts,
            delay_seconds=self.retry_delay_seconds,
            retry_if=is_rate_limited,
            label=f"{type(self).__name__}.complete",
        )

    @abstractmethod
    async def _complete_once(
        self,
        messages: list[Message],
        temperature: float | None,
        max_tokens: int | None,
    ) -> LLMResponse:
        pass

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()


class OpenAIChatProvider(_HTTPChatProvider):
    """OpenAI-compatible ``/chat/completions`` provider."""

    def __init__(self, model: str = "gpt-3.5-turbo", base_url: str = OPENAI_BASE_URL, **kwargs: Any):
        super().__init__(model=model, base_url=base_url, **kwargs)

    async def _complete_once(
        self,
        messages: list[Message],
        temperature: float | None,
        max_tokens: int | None,
    ) -> LLMResponse:
        url = f"{self.base_url}/chat/completions"
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }

        try:
            log.debug("Calling chat completions", model=self.model, url=url, msg_count=len(body["messages"]))
            response = await self.client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransportError(f"OpenAI HTTP error: {e}")

        if not response.is_success:
            self._raise_for_error(response, "OpenAI")

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"OpenAI response decode error: {e}")
        if not isinstance(data, dict):
            raise LLMError("OpenAI response body is not a JSON object")

        # Some compatible servers report errors with a 200 status.
        if isinstance(data.get("error"), dict):
            error = data["error"]
            raise TransportError(
                f"OpenAI API error: {error.get('message', '')}",
                response.status_code,
                error.get("type"),
                error.get("code"),
            )

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("OpenAI response contained no choices")
        content = (choices[0].get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}

        return LLMResponse(
            content=content,
            model=str(data.get("model") or self.model),
            usage={
                "prompt_tokens": int(usage.get("prompt_tokens", 0)),
                "completion_tokens": int(usage.get("completion_tokens", 0)),
                "total_tokens": int(usage.get("total_tokens", 0)),
            },
        )


class OllamaProvider(_HTTPChatProvider):
    """Direct Ollama API provider."""

    def __init__(self, model: str = "llama3.2", base_url: str = OLLAMA_NATIVE_BASE_URL, **kwargs: Any):
        super().__init__(model=model, base_url=base_url, **kwargs)

    async def _complete_once(
        self,
        messages: list[Message],
        temperature: float | None,
        max_tokens: int | None,
    ) -> LLMResponse:
        url = f"{self.base_url}/api/chat"
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "stream": False,
            "options": {
                "num_ctx": self.token_limit,
                "temperature": self.temperature if temperature is None else temperature,
                "num_predict": max_tokens or self.max_tokens,
            },
        }

        try:
            log.debug("Calling Ollama", model=self.model, url=url, msg_count=len(body["messages"]))
            response = await self.client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransportError(f"Ollama HTTP error: {e}")

        if not response.is_success:
            self._raise_for_error(response, "Ollama")

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}")
        if not isinstance(data, dict):
            raise LLMError("Ollama response body is not a JSON object")

        content = data.get("message", {}).get("content", "")
        prompt_tokens = int(data.get("prompt_eval_count", 0))
        completion_tokens = int(data.get("eval_count", 0))
        return LLMResponse(
            content=content,
            model=self.model,
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        )


def create_provider(
    provider: str = "openai",
    model: str = "gpt-3.5-turbo",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.8,
    max_tokens: int = 1000,
    token_limit: int | None = None,
    timeout: float = 120.0,
    retry_attempts: int = 3,
    retry_delay_seconds: float = 20.0,
) -> LLMProvider:
    """Create a chat provider.

    Args:
        provider: Provider name (openai, ollama)
        model: Model name
        api_key: Optional API key, held by the provider only
        base_url: Optional base URL
        temperature: Default temperature
        max_tokens: Default max reply tokens
        token_limit: Optional context window override

    Returns:
        Configured LLMProvider instance
    """
    kwargs: dict[str, Any] = {
        "temperature": temperature,
        "max_tokens": max_tokens,
        "api_key": api_key,
        "token_limit": token_limit,
        "timeout": timeout,
        "retry_attempts": retry_attempts,
        "retry_delay_seconds": retry_delay_seconds,
    }
    name = str(provider or "").strip().lower()
    if name == "openai":
        return OpenAIChatProvider(model=model, base_url=base_url or OPENAI_BASE_URL, **kwargs)
    if name == "ollama":
        return OllamaProvider(model=model, base_url=base_url or OLLAMA_NATIVE_BASE_URL, **kwargs)
    raise ValueError(f"Provider '{provider}' not supported. Use 'openai' or 'ollama'.")


# Global provider instance
_provider: LLMProvider | None = None


def get_provider() -> LLMProvider:
    """Get the global chat provider instance."""
    global _provider
    if _provider is None:
        from loopwright.config import get_config
        cfg = get_config()
        _provider = create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            api_key=cfg.model.api_key or None,
            base_url=cfg.model.base_url or None,
            temperature=cfg.model.temperature,
            max_tokens=cfg.model.reply_tokens,
            token_limit=cfg.model.token_limit,
            timeout=cfg.model.request_timeout_seconds,
            retry_attempts=cfg.model.retry_attempts,
            retry_delay_seconds=cfg.model.retry_delay_seconds,
        )
    return _provider


def set_provider(provider: LLMProvider) -> None:
    """Set the global chat provider instance."""
    global _provider
    _provider = provider
