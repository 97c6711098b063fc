"""Agent/group context store: the read-only content surface the orchestrator queries."""

import logging
import re
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Protocol

import frontmatter
import yaml

from rlm.models import Agent, ContextLevel, Group, RankedAgent

logger = logging.getLogger(__name__)

_CONTEXT_SEPARATOR = "\n\n---\n\n"

_STOP_WORDS = frozenset({
    "the", "is", "at", "which", "on", "a", "an", "and", "or", "but",
    "in", "with", "to", "for", "of", "as", "by", "from", "what",
    "where", "when", "why", "how", "who", "about", "can", "could",
    "should", "would", "will", "are", "was", "were", "been", "be",
    "have", "has", "had", "do", "does", "did", "this", "that",
    "these", "those", "there", "here", "all", "each", "every",
    "both", "few", "more", "most", "other", "some", "such", "than",
    "too", "very", "just", "also", "now", "only", "then", "so",
})

# (field, weight) pairs scored per matching query keyword
_FIELD_WEIGHTS: tuple[tuple[str, float], ...] = (
    ("display_name", 10.0),
    ("summary", 5.0),
    ("key_points", 3.0),
    ("action_items", 3.0),
    ("transcript", 2.0),
)


class ContextStore(Protocol):
    """What the orchestrator needs from an agent store. Never mutated by the core."""

    def list_agents(self) -> list[Agent]: ...

    def list_groups(self) -> list[Group]: ...

    def get_agent(self, agent_id: str) -> Agent | None: ...

    def get_combined_context(self, agent_ids: Sequence[str], level: ContextLevel | str) -> str: ...

    def query_agents(self, text: str, max_results: int = 5, min_score: float = 0.0) -> list[RankedAgent]: ...


def extract_keywords(text: str) -> list[str]:
    """Unique lower-case words longer than two characters, stop words removed, in order."""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    return list(dict.fromkeys(w for w in words if len(w) > 2 and w not in _STOP_WORDS))


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        return None


class InMemoryContextStore:
    """Reference ContextStore holding agents and groups in memory."""

    def __init__(self, agents: Iterable[Agent] = (), groups: Iterable[Group] = ()) -> None:
        self._agents: dict[str, Agent] = {a.id: a for a in agents}
        self._groups: list[Group] = list(groups)
        self._search_text: dict[str, str] = {
            a.id: " ".join(
                (a.display_name, a.summary, a.key_points, a.action_items, a.sentiment, a.transcript)
            ).lower()
            for a in self._agents.values()
        }

    def list_agents(self) -> list[Agent]:
        return list(self._agents.values())

    def active_agents(self) -> list[Agent]:
        return [a for a in self._agents.values() if a.enabled]

    def list_groups(self) -> list[Group]:
        return list(self._groups)

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def get_context_slice(self, agent_id: str, level: ContextLevel | str = ContextLevel.STANDARD) -> str:
        """Formatted context for one agent; empty for unknown or disabled agents."""
        agent = self._agents.get(agent_id)
        if agent is None or not agent.enabled:
            return ""
        level = ContextLevel(level)
        if level == ContextLevel.NONE:
            return ""

        lines = [
            f"Source: {agent.display_name} ({agent.created_date or 'No date'})",
            f"Summary: {agent.summary or 'N/A'}",
        ]
        if level in (ContextLevel.STANDARD, ContextLevel.FULL):
            lines.append(f"Key Points: {agent.key_points or 'N/A'}")
            lines.append(f"Action Items: {agent.action_items or 'N/A'}")
        if level == ContextLevel.FULL:
            lines.append(f"Sentiment: {agent.sentiment or 'N/A'}")
            if agent.transcript:
                lines.append(f"Transcript: {agent.transcript}")
        return "\n".join(lines)

    def get_combined_context(self, agent_ids: Sequence[str], level: ContextLevel | str = ContextLevel.STANDARD) -> str:
        slices = (self.get_context_slice(agent_id, level) for agent_id in agent_ids)
        return _CONTEXT_SEPARATOR.join(s for s in slices if s)

    def _score(self, agent: Agent, keywords: Sequence[str], today: date) -> float:
        score = 0.0
        search_text = self._search_text[agent.id]
        for keyword in keywords:
            for field_name, weight in _FIELD_WEIGHTS:
                if keyword in getattr(agent, field_name).lower():
                    score += weight
            if keyword in search_text:
                score += 1.0

        created = _parse_date(agent.created_date)
        if created is not None:
            days_since = (today - created).days
            score += max(0.0, 5.0 - days_since / 14)
        return score

    def query_agents(self, text: str, max_results: int = 5, min_score: float = 0.0) -> list[RankedAgent]:
        """Rank enabled agents by keyword relevance plus a two-week recency boost."""
        keywords = extract_keywords(text)
        today = date.today()
        scored = [RankedAgent(agent=a, score=self._score(a, keywords, today)) for a in self.active_agents()]
        ranked = sorted((r for r in scored if r.score >= min_score), key=lambda r: r.score, reverse=True)
        return ranked[:max_results]


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return "; ".join(str(v) for v in value)
    return str(value)


def parse_agent_file(file_path: Path) -> Agent:
    """Parse one markdown agent file; front matter carries metadata, the body is the transcript."""
    post = frontmatter.load(str(file_path))
    meta = dict(post.metadata)
    created = meta.get("date") or meta.get("created_date")
    return Agent(
        id=str(meta.get("id") or file_path.stem),
        display_name=str(meta.get("title") or meta.get("display_name") or file_path.stem),
        source_type=str(meta.get("source_type", "transcript")),
        created_date=str(created) if created else None,
        summary=_text(meta.get("summary")),
        key_points=_text(meta.get("key_points")),
        action_items=_text(meta.get("action_items")),
        sentiment=_text(meta.get("sentiment")),
        transcript=post.content.strip(),
        enabled=bool(meta.get("enabled", True)),
    )


def parse_groups_file(file_path: Path) -> list[Group]:
    with file_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    groups: list[Group] = []
    for item in raw.get("groups", []):
        criteria = item.get("criteria") or {}
        groups.append(
            Group(
                id=str(item["id"]),
                name=str(item.get("name", item["id"])),
                criteria_type=str(criteria.get("type", "custom")),
                agent_ids=tuple(str(a) for a in item.get("agent_ids", [])),
                enabled=bool(item.get("enabled", True)),
                description=str(item.get("description", "")),
            )
        )
    return groups


def load_store(directory: Path) -> InMemoryContextStore:
    """Load every *.md agent file in ``directory`` plus an optional groups.yaml.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Agents directory not found: {directory}")

    agents = [parse_agent_file(p) for p in sorted(directory.glob("*.md"))]

    groups_path = directory / "groups.yaml"
    groups = parse_groups_file(groups_path) if groups_path.exists() else []

    known = {a.id for a in agents}
    for group in groups:
        missing = [a for a in group.agent_ids if a not in known]
        if missing:
            logger.warning("Group %s references unknown agents: %s", group.id, ", ".join(missing))

    logger.info("Loaded %d agents and %d groups from %s", len(agents), len(groups), directory)
    return InMemoryContextStore(agents, groups)
