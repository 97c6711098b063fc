"""Adapt an AIProvider to the llm_call(prompt, context, options) contract."""

import logging
from typing import Any

from config.config_loader import PromptsConfig
from rlm.providers.base import AIProvider, LLMCall

logger = logging.getLogger(__name__)


def render_prompt(prompts: PromptsConfig, prompt: str, context: str) -> str:
    """Wrap a sub-query with its scope context; bare prompt when there is none."""
    if not context.strip():
        return prompt
    return prompts.sub_query.format(context=context, query=prompt)


def make_llm_call(provider: AIProvider, prompts: PromptsConfig) -> LLMCall:
    """Return an async llm_call bound to one provider.

    The returned callable raises whatever the provider raises (normally
    ProviderError); retry and timeout policy belong to the executor.
    """

    async def llm_call(prompt: str, context: str, options: dict[str, Any]) -> str:
        label = str(options.get("query_id", ""))
        response = await provider.generate(
            render_prompt(prompts, prompt, context),
            system=prompts.system,
            label=label,
        )
        logger.debug("%s answered %s with %d chars", provider.name(), label or "call", len(response.content))
        return response.content

    return llm_call
