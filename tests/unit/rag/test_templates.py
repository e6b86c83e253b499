"""Tests for prompt assembly."""

from __future__ import annotations

from insightrag.rag.templates import build_prompt
from insightrag.store.models import ScoredRecord
from stubs import make_record


def test_prompt_layout():
    a = make_record("a", age=40)
    b = make_record("b", age=50)
    prompt = build_prompt("Who churns?", [ScoredRecord(a, 0.987), ScoredRecord(b, 0.5)])
    assert prompt == (
        "Analysis Query: Who churns?\n\n"
        "Relevant Customer Profiles for Context:\n"
        f"* Similarity Score: 0.99\n{a.summary}\n"
        f"* Similarity Score: 0.50\n{b.summary}\n"
    )


def test_prompt_without_hits_keeps_query():
    prompt = build_prompt("Anything?", [])
    assert prompt == "Analysis Query: Anything?\n\nRelevant Customer Profiles for Context:\n"


def test_prompt_is_deterministic():
    hits = [ScoredRecord(make_record("x"), 0.75)]
    assert build_prompt("q", hits) == build_prompt("q", hits)
