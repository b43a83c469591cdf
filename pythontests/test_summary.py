"""
Tests for AI summary generation and per-user caching.

Groq is never called: the SDK client on Summarizer is replaced by a MagicMock.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from groq import GroqError

from conftest import NOW
from recap.config import AIConfig
from recap.summary import Summarizer, SummaryError, build_prompt, get_or_create_summary

TOP_TRACKS = {
    "items": [
        {"name": "Song A", "artists": [{"name": "Artist 1"}, {"name": "Artist 2"}], "album": {"name": "LP"}},
        {"name": "Song B", "artists": [{"name": "Artist 3"}]},
    ]
}


def _completion(text: str) -> MagicMock:
    resp = MagicMock()
    resp.choices = [MagicMock()]
    resp.choices[0].message.content = text
    return resp


@pytest.fixture
def summarizer() -> Summarizer:
    s = Summarizer(AIConfig(api_key="test-key", model="test-model"))
    s._client = MagicMock()
    s._client.chat.completions.create.return_value = _completion("  You love indie pop.  ")
    return s


def test_prompt_compacts_top_tracks() -> None:
    prompt = build_prompt(TOP_TRACKS)

    assert "1. Song A by Artist 1, Artist 2 (LP)" in prompt
    assert "2. Song B by Artist 3" in prompt
    assert "artists" not in prompt


def test_prompt_passes_other_data_through_as_json() -> None:
    prompt = build_prompt({"recent": ["x", "y"]})
    assert '{"recent": ["x", "y"]}' in prompt


def test_summarize_strips_text_and_uses_model(summarizer: Summarizer) -> None:
    assert summarizer.summarize(TOP_TRACKS) == "You love indie pop."

    kwargs = summarizer._client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert "Song A" in kwargs["messages"][1]["content"]


def test_summarize_empty_completion_raises(summarizer: Summarizer) -> None:
    summarizer._client.chat.completions.create.return_value = _completion("")

    with pytest.raises(SummaryError):
        summarizer.summarize(TOP_TRACKS)


def test_summarize_groq_failure_raises(summarizer: Summarizer) -> None:
    summarizer._client.chat.completions.create.side_effect = GroqError("service unavailable")

    with pytest.raises(SummaryError):
        summarizer.summarize(TOP_TRACKS)


def test_second_request_returns_cached_summary(store, summarizer: Summarizer) -> None:
    first = get_or_create_summary("user-1", TOP_TRACKS, store, summarizer, NOW)
    summarizer._client.chat.completions.create.return_value = _completion("Something else entirely.")
    second = get_or_create_summary("user-1", {"items": []}, store, summarizer, NOW)

    assert first.summary == "You love indie pop."
    assert first.cached is False
    assert second.summary == first.summary
    assert second.cached is True
    assert summarizer._client.chat.completions.create.call_count == 1


def test_cached_summary_needs_no_listening_data(store, summarizer: Summarizer) -> None:
    store.save_summary("user-1", "Stored earlier.", NOW)

    result = get_or_create_summary("user-1", None, store, summarizer, NOW)

    assert result.summary == "Stored earlier."
    summarizer._client.chat.completions.create.assert_not_called()


def test_missing_listening_data_without_cache(store, summarizer: Summarizer) -> None:
    with pytest.raises(ValueError):
        get_or_create_summary("user-1", None, store, summarizer, NOW)


def test_failed_generation_caches_nothing(store, summarizer: Summarizer) -> None:
    summarizer._client.chat.completions.create.side_effect = GroqError("boom")

    with pytest.raises(SummaryError):
        get_or_create_summary("user-1", TOP_TRACKS, store, summarizer, NOW)
    assert store.get_summary("user-1") is None
