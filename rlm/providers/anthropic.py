"""Anthropic Claude provider using anthropic SDK with native async."""

from typing import Any

import anthropic as anthropic_sdk

from rlm.models import ModelResponse
from rlm.providers.base import ConfiguredProvider


class AnthropicProvider(ConfiguredProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def _make_client(self, api_key: str) -> Any:
        return anthropic_sdk.AsyncAnthropic(api_key=api_key)

    async def generate(self, prompt: str, *, system: str | None = None, label: str = "") -> ModelResponse:
        kwargs: dict = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature

        response, latency = await self._send(self._client.messages.create(**kwargs))

        # thinking and tool blocks carry no answer text
        text = "\n".join(b.text for b in response.content or [] if b.type == "text")
        token_count = response.usage.input_tokens + response.usage.output_tokens if response.usage else None
        return self._response(text, latency, token_count, label)
