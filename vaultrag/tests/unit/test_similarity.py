from __future__ import annotations

import pytest

from vaultrag.services.semantic_cache import estimate_tokens_saved, query_hash, similarity


@pytest.mark.parametrize(
    ("first", "second"),
    [
        ("What is yesterday's CVR?", "What's the CVR for yesterday?"),
        ("revenue by channel", "channel revenue last week"),
        ("a b", "completely different words"),
    ],
)
def test_similarity_is_symmetric(first: str, second: str) -> None:
    assert similarity(first, second) == similarity(second, first)


def test_identical_text_scores_one() -> None:
    assert similarity("Show me the funnel", "Show me the funnel") == 1.0
    assert similarity("Show me the funnel", "show me the FUNNEL") == 1.0


def test_short_words_are_ignored() -> None:
    # Only words of three or more characters count, so nothing overlaps here.
    assert similarity("is it ok", "it is ok") == 0.0
    assert similarity("is it", "to be") == 0.0


def test_cvr_paraphrase_clears_threshold() -> None:
    score = similarity("What is yesterday's CVR?", "What's the CVR for yesterday?")
    assert score == pytest.approx(0.6)


def test_empty_text_scores_zero_against_other_text() -> None:
    assert similarity("", "anything here") == 0.0
    assert similarity("anything here", "") == 0.0


def test_identical_empty_strings_score_one() -> None:
    # Identity wins before the empty check; request validation keeps empty queries out.
    assert similarity("", "") == 1.0


def test_query_hash_normalises_case_and_whitespace() -> None:
    assert query_hash("  Hello World ") == query_hash("hello world")


def test_tokens_saved_estimate() -> None:
    assert estimate_tokens_saved("abcd", "efgh1") == 3
