"""Abstract base for all AI model providers and the llm_call contract."""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from config.config_loader import ModelConfig
from rlm.models import ModelResponse

logger = logging.getLogger(__name__)

# llm_call(prompt, context, options) -> response text
LLMCall = Callable[[str, str, dict[str, Any]], Awaitable[str]]


class CallError(Exception):
    """Raised when a remote model call fails."""


class ProviderError(CallError):
    """Raised when a provider SDK call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, prompt: str, *, system: str | None = None, label: str = "") -> ModelResponse:
        """Generate a response for the given prompt.

        Args:
            prompt: The full user prompt text to send.
            system: Optional system instruction.
            label: Caller tag used in log lines (usually the sub-query id).

        Returns:
            ModelResponse dataclass with content and metadata.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...


class ConfiguredProvider(AIProvider):
    """AIProvider backed by one ModelConfig entry and an SDK client.

    Subclasses build the client in ``_make_client`` and translate a
    request/response pair in ``generate``; key lookup, timeout and error
    wrapping live here.
    """

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = self._make_client(api_key)

    @abstractmethod
    def _make_client(self, api_key: str) -> Any:
        ...

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def _send(self, request: Awaitable[Any]) -> tuple[Any, float]:
        """Await one SDK request under the configured timeout; return (response, latency)."""
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(request, timeout=self._config.timeout_sec)
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc
        return response, time.monotonic() - start

    def _response(self, content: str | None, latency: float, token_count: int | None, label: str) -> ModelResponse:
        if not content:
            raise ProviderError(self._config.name, "Empty response content")
        logger.info("%s %s: %.2fs, %s tokens", self._config.name, label or "call", latency, token_count)
        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            content=content,
            latency_sec=latency,
            token_count=token_count,
        )
