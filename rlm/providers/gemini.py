"""Gemini provider using google-genai SDK with native async."""

from typing import Any

from google import genai
from google.genai import types as genai_types

from rlm.models import ModelResponse
from rlm.providers.base import ConfiguredProvider


class GeminiProvider(ConfiguredProvider):
    """Google Gemini provider via google-genai SDK."""

    def _make_client(self, api_key: str) -> Any:
        return genai.Client(api_key=api_key)

    async def generate(self, prompt: str, *, system: str | None = None, label: str = "") -> ModelResponse:
        generation_config = genai_types.GenerateContentConfig(
            max_output_tokens=self._config.max_tokens,
            system_instruction=system or None,
            temperature=self._config.temperature,
        )
        response, latency = await self._send(
            self._client.aio.models.generate_content(
                model=self._config.model,
                contents=prompt,
                config=generation_config,
            )
        )
        usage = response.usage_metadata
        return self._response(response.text, latency, usage.total_token_count if usage else None, label)
