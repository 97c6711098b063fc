"""Tests for rlm/store.py."""

import logging
from datetime import date, timedelta
from pathlib import Path

import pytest

from rlm.models import Agent, ContextLevel
from rlm.store import InMemoryContextStore, extract_keywords, load_store, parse_agent_file


def test_extract_keywords_drops_stop_words_and_short_words():
    assert extract_keywords("What are the risks of the Q3 launch?") == ["risks", "launch"]


def test_context_levels(store):
    assert store.get_context_slice("m1", ContextLevel.NONE) == ""
    summary = store.get_context_slice("m1", ContextLevel.SUMMARY)
    assert summary == "Source: Kickoff Meeting (2024-01-10)\nSummary: Budget approved for the launch."
    standard = store.get_context_slice("m1", "standard")
    assert "Key Points: Launch in March" in standard
    assert "Sentiment" not in standard
    full = store.get_context_slice("m1", ContextLevel.FULL)
    assert "Sentiment: positive" in full


def test_missing_values_render_as_na():
    s = InMemoryContextStore([Agent(id="x", display_name="Bare")])
    assert s.get_context_slice("x", ContextLevel.STANDARD) == (
        "Source: Bare (No date)\nSummary: N/A\nKey Points: N/A\nAction Items: N/A"
    )


def test_combined_context_skips_unknown_ids(store):
    combined = store.get_combined_context(["m1", "nope", "m2"], ContextLevel.SUMMARY)
    assert combined.count("Source:") == 2
    assert "\n\n---\n\n" in combined


def test_disabled_agent_has_no_context():
    s = InMemoryContextStore([
        Agent(id="on", display_name="Shown", summary="visible"),
        Agent(id="off", display_name="Hidden", summary="secret", enabled=False),
    ])
    assert s.get_context_slice("off", ContextLevel.FULL) == ""
    combined = s.get_combined_context(["on", "off"], ContextLevel.STANDARD)
    assert "Shown" in combined
    assert "Hidden" not in combined and "secret" not in combined


def test_query_agents_ranks_by_field_weights(store):
    ranked = store.query_agents("vendor risk")
    assert ranked[0].agent.id == "m2"
    assert ranked[0].score > 0


def test_query_agents_respects_min_score_and_max_results(store):
    assert store.query_agents("launch", max_results=1)[0].agent.id == "m1"
    assert store.query_agents("launch", min_score=100.0) == []


def test_query_agents_title_match_weighs_most():
    s = InMemoryContextStore([
        Agent(id="a", display_name="Pricing", summary=""),
        Agent(id="b", display_name="Other", summary="pricing"),
    ])
    ranked = s.query_agents("pricing")
    assert [r.agent.id for r in ranked] == ["a", "b"]
    assert ranked[0].score == pytest.approx(11.0)
    assert ranked[1].score == pytest.approx(6.0)


def test_query_agents_recency_boost():
    today = date.today()
    s = InMemoryContextStore([
        Agent(id="new", display_name="New", created_date=today.isoformat()),
        Agent(id="old", display_name="Old", created_date=(today - timedelta(days=400)).isoformat()),
    ])
    scores = {r.agent.id: r.score for r in s.query_agents("nothing matches")}
    assert scores["new"] == pytest.approx(5.0)
    assert scores["old"] == 0.0


def test_query_agents_excludes_disabled():
    s = InMemoryContextStore([Agent(id="a", display_name="Launch", enabled=False)])
    assert s.query_agents("launch") == []


def _write_agent(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text(body, encoding="utf-8")
    return path


def test_parse_agent_file(tmp_path):
    path = _write_agent(tmp_path, "kickoff.md", (
        "---\n"
        "id: m1\n"
        "title: Kickoff Meeting\n"
        "date: 2024-01-10\n"
        "summary: Budget approved.\n"
        "key_points:\n  - Launch in March\n  - Hire two engineers\n"
        "---\n"
        "Alice: let's go.\n"
    ))
    agent = parse_agent_file(path)
    assert agent.id == "m1"
    assert agent.display_name == "Kickoff Meeting"
    assert agent.created_date == "2024-01-10"
    assert agent.key_points == "Launch in March; Hire two engineers"
    assert agent.transcript == "Alice: let's go."
    assert agent.enabled


def test_parse_agent_file_defaults_to_file_stem(tmp_path):
    agent = parse_agent_file(_write_agent(tmp_path, "notes.md", "Just a transcript."))
    assert agent.id == "notes"
    assert agent.display_name == "notes"
    assert agent.transcript == "Just a transcript."


def test_load_store_with_groups(tmp_path, caplog):
    _write_agent(tmp_path, "a.md", "---\nid: a\ntitle: A\n---\nbody")
    _write_agent(tmp_path, "b.md", "---\nid: b\ntitle: B\n---\nbody")
    (tmp_path / "groups.yaml").write_text(
        "groups:\n"
        "  - id: g1\n"
        "    name: Early\n"
        "    criteria:\n      type: temporal\n"
        "    agent_ids: [a, b, ghost]\n",
        encoding="utf-8",
    )
    with caplog.at_level(logging.WARNING):
        s = load_store(tmp_path)
    assert [a.id for a in s.list_agents()] == ["a", "b"]
    [group] = s.list_groups()
    assert group.criteria_type == "temporal"
    assert group.agent_ids == ("a", "b", "ghost")
    assert "ghost" in caplog.text


def test_load_store_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_store(tmp_path / "missing")


def test_sample_agents_directory_loads():
    s = load_store(Path(__file__).parent.parent / "agents")
    assert {a.id for a in s.list_agents()} == {"kickoff", "risk-review", "customer-sync"}
    assert [g.id for g in s.list_groups()] == ["planning", "customers"]
    assert s.get_agent("kickoff").created_date == "2024-01-10"
