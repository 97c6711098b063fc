"""Shared pytest fixtures."""

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, DefaultsConfig, ModelConfig, OrchestrationConfig, PromptsConfig
from rlm.models import Agent, Classification, Complexity, Group, Intent, ModelResponse
from rlm.providers.base import AIProvider
from rlm.store import InMemoryContextStore


class FakeLLM:
    """Scripted llm_call double that records every call.

    ``script`` maps a query id to a response, an exception, or a list of
    those indexed by attempt (the last entry repeats).
    """

    def __init__(self, script: dict[str, Any] | None = None, default: str = "Stub answer.",
                 delay: float = 0.0) -> None:
        self.script = script or {}
        self.default = default
        self.delay = delay
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def __call__(self, prompt: str, context: str, options: dict[str, Any]) -> str:
        self.calls.append((prompt, context, dict(options)))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.script.get(options.get("query_id"), self.default)
        if isinstance(outcome, list):
            attempt = int(options.get("attempt", 1))
            outcome = outcome[min(attempt, len(outcome)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def calls_for(self, query_id: str) -> list[tuple[str, str, dict[str, Any]]]:
        return [c for c in self.calls if c[2].get("query_id") == query_id]

    @property
    def query_ids(self) -> list[str]:
        return [c[2].get("query_id") for c in self.calls]


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def orchestration_config() -> OrchestrationConfig:
    """Fast settings: no backoff sleep, short timeouts."""
    return OrchestrationConfig(retry_backoff_sec=0.0, timeout_sec=1.0, reduce_timeout_sec=1.0,
                               debate_timeout_sec=1.0)


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        system="You answer questions about meetings.",
        sub_query="Context:\n{context}\n\nQuestion: {query}",
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        synthesizer="claude",
        output_dir=tmp_path / "output",
        agents_dir=tmp_path / "agents",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    model_cfg = ModelConfig(
        name="claude",
        sdk="anthropic",
        model="claude-sonnet-4-5",
        api_key_env="ANTHROPIC_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        models={"claude": model_cfg},
        prompts=sample_prompts_config,
        available_providers={"claude"},
    )


@pytest.fixture
def three_agents() -> list[Agent]:
    return [
        Agent(id="m1", display_name="Kickoff Meeting", created_date="2024-01-10",
              summary="Budget approved for the launch.", key_points="Launch in March",
              action_items="Draft plan", sentiment="positive"),
        Agent(id="m2", display_name="Risk Review", created_date="2024-02-01",
              summary="Vendor delays threaten the launch.", key_points="Vendor risk",
              action_items="Find backup vendor", sentiment="concerned"),
        Agent(id="m3", display_name="Customer Sync", created_date="2024-02-20",
              summary="Customers asked for an earlier beta.", key_points="Beta demand",
              action_items="Schedule beta", sentiment="neutral"),
    ]


@pytest.fixture
def store(three_agents: list[Agent]) -> InMemoryContextStore:
    return InMemoryContextStore(three_agents)


@pytest.fixture
def eight_agents() -> list[Agent]:
    return [
        Agent(id=f"a{i}", display_name=f"Meeting {i}", summary=f"Launch topic {i}.")
        for i in range(1, 9)
    ]


@pytest.fixture
def two_groups() -> list[Group]:
    return [
        Group(id="g-q1", name="Q1 meetings", criteria_type="temporal", agent_ids=("a1", "a2", "a3", "a4")),
        Group(id="g-risk", name="Risk discussions", criteria_type="custom", agent_ids=("a5", "a6", "a7", "a8"),
              description="Blockers and concerns"),
    ]


@pytest.fixture
def grouped_store(eight_agents: list[Agent], two_groups: list[Group]) -> InMemoryContextStore:
    return InMemoryContextStore(eight_agents, two_groups)


@pytest.fixture
def comparative_aggregate() -> Classification:
    return Classification(intent=Intent.COMPARATIVE, complexity=Complexity.AGGREGATE)


@pytest.fixture
def factual_simple() -> Classification:
    return Classification(intent=Intent.FACTUAL, complexity=Complexity.SIMPLE)


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=ModelResponse(
                provider=provider_name,
                model="mock-model",
                content=response_content,
                latency_sec=0.1,
                token_count=10,
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, prompt: str, *, system: str | None = None, label: str = "") -> ModelResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return ModelResponse(
            provider=self._name,
            model="mock-model",
            content=self._response_content,
            latency_sec=0.1,
            token_count=10,
        )


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()
