"""OpenAI-compatible provider (OpenAI, xAI Grok, DeepSeek) using openai SDK with native async."""

from typing import Any

from openai import AsyncOpenAI

from rlm.models import ModelResponse
from rlm.providers.base import ConfiguredProvider


class OpenAIProvider(ConfiguredProvider):
    """Chat-completions provider; base_url selects a compatible vendor."""

    def _make_client(self, api_key: str) -> Any:
        if self._config.base_url:
            return AsyncOpenAI(api_key=api_key, base_url=self._config.base_url)
        return AsyncOpenAI(api_key=api_key)

    async def generate(self, prompt: str, *, system: str | None = None, label: str = "") -> ModelResponse:
        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})

        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "max_tokens": self._config.max_tokens,
        }
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature

        response, latency = await self._send(self._client.chat.completions.create(**kwargs))

        content = response.choices[0].message.content if response.choices else None
        token_count = response.usage.total_tokens if response.usage else None
        return self._response(content, latency, token_count, label)
