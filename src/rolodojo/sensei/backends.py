"""Transport clients for inference providers.

Every backend exposes the same two calls: list the models an endpoint
serves, and run a single non-streaming chat completion. Transport, status
and decoding failures all surface as ProviderError.
"""

import logging
from typing import Any, Protocol

import httpx
from groq import AsyncGroq, GroqError

from ..errors import ProviderError
from .models import LlmProvider, ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class InferenceBackend(Protocol):
    """What the orchestrator needs from a provider client."""

    async def list_models(self) -> list[str]: ...

    async def complete(
        self,
        model: str,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str: ...

    async def close(self) -> None: ...


def extract_message_content(content: Any) -> str:
    """Flatten chat message content that is a string or a list of text parts."""
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "".join(parts).strip()
    return ""


def _messages(system: str, prompt: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": prompt},
    ]


class OpenAICompatibleBackend:
    """Client for /v1/models and /v1/chat/completions over httpx.

    Used for the local server (Ollama and friends), OpenAI and xAI.
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the backend.

        Args:
            config: Provider settings (base URL and API key).
            client: Optional preconfigured client, mainly for tests.
            timeout: Per-request timeout in seconds.
        """
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.has_api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key.strip()}"
        return headers

    def _url(self, suffix: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{suffix.lstrip('/')}"

    async def _request(self, method: str, suffix: str, **kwargs: Any) -> dict[str, Any]:
        url = self._url(suffix)
        try:
            response = await self._client.request(
                method, url, headers=self._headers(), **kwargs
            )
        except httpx.TimeoutException as e:
            raise ProviderError(f"{method} {url} timed out") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} {url} failed: {e}") from e

        if not response.is_success:
            raise ProviderError(f"{method} {url} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"{method} {url} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{method} {url} returned a non-object body")
        return data

    async def list_models(self) -> list[str]:
        data = await self._request("GET", "models")
        models = data.get("data")
        if not isinstance(models, list):
            return []
        return [
            str(item["id"]).strip()
            for item in models
            if isinstance(item, dict) and str(item.get("id", "")).strip()
        ]

    async def complete(
        self,
        model: str,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        data = await self._request(
            "POST",
            "chat/completions",
            json={
                "model": model,
                "messages": _messages(system, prompt),
                "temperature": temperature,
                "max_tokens": max_tokens,
                "stream": False,
            },
        )
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        first = choices[0]
        if not isinstance(first, dict):
            return ""
        message = first.get("message")
        if not isinstance(message, dict):
            return ""
        return extract_message_content(message.get("content"))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class GroqBackend:
    """Client for Groq cloud through the official SDK."""

    def __init__(
        self,
        config: ProviderConfig,
        client: AsyncGroq | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self._client = client or AsyncGroq(api_key=config.api_key.strip(), timeout=timeout)

    async def list_models(self) -> list[str]:
        try:
            response = await self._client.models.list()
        except GroqError as e:
            raise ProviderError(f"Groq model listing failed: {e}") from e
        return [model.id for model in (response.data or []) if model.id]

    async def complete(
        self,
        model: str,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=_messages(system, prompt),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=False,
            )
        except GroqError as e:
            raise ProviderError(f"Groq completion failed: {e}") from e

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.close()


def create_backend(config: ProviderConfig, timeout: float = DEFAULT_TIMEOUT) -> InferenceBackend:
    """Build the client for a provider."""
    if config.provider is LlmProvider.GROQ:
        return GroqBackend(config, timeout=timeout)
    return OpenAICompatibleBackend(config, timeout=timeout)
