"""Heuristic conflict detection between perspective responses.

Marker counting plus lexical Jaccard similarity; no model calls. The marker
vocabularies come from ConflictConfig and are tunable.
"""

import re
from collections import Counter
from collections.abc import Sequence
from functools import lru_cache
from typing import Any

from config.config_loader import ConflictConfig
from rlm.models import (
    ConflictAnalysis,
    ConflictPairReport,
    ExecutionResult,
    PairScore,
    SourceExcerpt,
)

DEFAULT_AGREEMENT_THRESHOLD = 0.75


@lru_cache(maxsize=64)
def _marker_pattern(marker: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(marker)}\b", re.IGNORECASE)


def count_markers(text: str, markers: Sequence[str]) -> int:
    return sum(len(_marker_pattern(m).findall(text)) for m in markers)


def jaccard_similarity(text_a: str, text_b: str) -> float:
    """Jaccard index over whitespace-split words longer than three characters."""
    words_a = {w for w in text_a.split() if len(w) > 3}
    words_b = {w for w in text_b.split() if len(w) > 3}
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def score_pair(
    text_a: str,
    text_b: str,
    settings: ConflictConfig = ConflictConfig(),
    agreement_threshold: float = DEFAULT_AGREEMENT_THRESHOLD,
) -> PairScore:
    """Classify two response texts as conflict, agreement or neutral."""
    a = (text_a or "").lower()
    b = (text_b or "").lower()
    if not a.strip() or not b.strip():
        return PairScore(0, 0, 0.0, "neutral", 0.0)

    conflict_score = count_markers(a, settings.conflict_markers) + count_markers(b, settings.conflict_markers)
    agreement_score = count_markers(a, settings.agreement_markers) + count_markers(b, settings.agreement_markers)
    similarity = jaccard_similarity(a, b)

    if conflict_score > agreement_score and similarity < agreement_threshold:
        return PairScore(
            conflict_score, agreement_score, similarity, "conflict",
            min(1.0, 0.5 + 0.1 * conflict_score),
        )
    if agreement_score > conflict_score or similarity >= agreement_threshold:
        return PairScore(
            conflict_score, agreement_score, similarity, "agreement",
            min(1.0, 0.5 + 0.1 * agreement_score + 0.3 * similarity),
        )
    return PairScore(conflict_score, agreement_score, similarity, "neutral", 0.5)


def extract_excerpt(response: str | None, max_length: int = 150) -> str:
    """First ``max_length`` chars, cut at a sentence end past the midpoint, else with an ellipsis."""
    if not response:
        return ""
    trimmed = response.strip()
    if len(trimmed) <= max_length:
        return trimmed
    cutoff = trimmed.rfind(".", 0, max_length + 1)
    if cutoff > max_length * 0.5:
        return trimmed[: cutoff + 1]
    return trimmed[:max_length] + "..."


def _perspective_label(result: ExecutionResult) -> str:
    return result.perspective.role.label if result.perspective else "Default"


def compare_results(
    first: ExecutionResult,
    second: ExecutionResult,
    settings: ConflictConfig,
    agreement_threshold: float,
    first_fallback: str = "Source 1",
    second_fallback: str = "Source 2",
) -> ConflictPairReport:
    score = score_pair(first.response or "", second.response or "", settings, agreement_threshold)
    return ConflictPairReport(
        type=score.type,
        confidence=score.confidence,
        similarity=score.similarity,
        conflict_score=score.conflict_score,
        agreement_score=score.agreement_score,
        source_a=SourceExcerpt(
            agent_name=first.agent_name or first_fallback,
            perspective=_perspective_label(first),
            excerpt=extract_excerpt(first.response, settings.excerpt_length),
        ),
        source_b=SourceExcerpt(
            agent_name=second.agent_name or second_fallback,
            perspective=_perspective_label(second),
            excerpt=extract_excerpt(second.response, settings.excerpt_length),
        ),
    )


def extract_conflict_themes(conflicts: Sequence[ConflictPairReport], settings: ConflictConfig) -> list[str]:
    """Most frequent content words (> 4 letters, stop words dropped) across conflicting excerpts."""
    if not conflicts:
        return []
    all_text = " ".join(f"{c.source_a.excerpt} {c.source_b.excerpt}" for c in conflicts).lower()
    freq: Counter[str] = Counter()
    for word in all_text.split():
        normalized = re.sub(r"[^a-z]", "", word)
        if len(normalized) > 4 and normalized not in settings.stop_words:
            freq[normalized] += 1
    return [word for word, _ in freq.most_common(settings.max_themes)]


def summarize(conflicts: Sequence[ConflictPairReport], agreements: Sequence[ConflictPairReport]) -> str | None:
    parts = []
    if agreements:
        parts.append(f"{len(agreements)} point(s) of agreement found")
    if conflicts:
        parts.append(f"{len(conflicts)} tension(s) or disagreement(s) detected")
    return "; ".join(parts) or None


def analyze_conflicts(
    results: Sequence[ExecutionResult],
    settings: ConflictConfig = ConflictConfig(),
    agreement_threshold: float = DEFAULT_AGREEMENT_THRESHOLD,
) -> ConflictAnalysis:
    """Compare every unordered pair of results and collect conflicts and agreements."""
    if len(results) < max(2, settings.min_responses):
        return ConflictAnalysis(has_conflicts=False)

    conflicts: list[ConflictPairReport] = []
    agreements: list[ConflictPairReport] = []
    for i in range(len(results)):
        for j in range(i + 1, len(results)):
            report = compare_results(
                results[i], results[j], settings, agreement_threshold,
                first_fallback=f"Source {i + 1}", second_fallback=f"Source {j + 1}",
            )
            if report.type == "conflict":
                conflicts.append(report)
            elif report.type == "agreement":
                agreements.append(report)

    return ConflictAnalysis(
        has_conflicts=bool(conflicts),
        conflicts=conflicts,
        agreements=agreements,
        conflict_themes=extract_conflict_themes(conflicts, settings),
        summary=summarize(conflicts, agreements),
    )


def format_for_synthesis(analysis: ConflictAnalysis | None) -> str:
    """Render flagged tensions as a numbered block for the synthesis prompt."""
    if analysis is None or not analysis.has_conflicts:
        return ""

    lines = ["**Identified Tensions:**"]
    for index, conflict in enumerate(analysis.conflicts, start=1):
        a, b = conflict.source_a, conflict.source_b
        lines.append("")
        lines.append(f"{index}. {a.perspective} ({a.agent_name}) vs {b.perspective} ({b.agent_name}):")
        lines.append(f'   - View A: "{a.excerpt}"')
        lines.append(f'   - View B: "{b.excerpt}"')

    if analysis.conflict_themes:
        lines.append("")
        lines.append(f"Key themes in tensions: {', '.join(analysis.conflict_themes)}")
    return "\n".join(lines)


def conflict_indicator(analysis: ConflictAnalysis | None) -> dict[str, Any] | None:
    """Compact summary for display; None when nothing conflicts."""
    if analysis is None or not analysis.has_conflicts:
        return None
    return {
        "count": len(analysis.conflicts),
        "text": analysis.summary,
        "themes": list(analysis.conflict_themes),
    }
