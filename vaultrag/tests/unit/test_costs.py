from __future__ import annotations

from decimal import Decimal

from vaultrag.core.config import get_settings
from vaultrag.services.costs import calculate_cost, estimate_tokens, estimate_usage


def test_estimate_tokens_uses_ratio() -> None:
    assert estimate_tokens("", ratio=4.0) == 0
    assert estimate_tokens("abc", ratio=4.0) == 1
    assert estimate_tokens("a" * 40, ratio=4.0) == 10


def test_calculate_cost_applies_per_1k_prices(monkeypatch) -> None:
    monkeypatch.setenv("LLM_INPUT_COST_PER_1K_USD", "0.001")
    monkeypatch.setenv("LLM_OUTPUT_COST_PER_1K_USD", "0.002")
    get_settings.cache_clear()
    assert calculate_cost(input_tokens=1000, output_tokens=500) == Decimal("0.002000")


def test_estimate_usage_sums_tokens() -> None:
    usage = estimate_usage(prompt_text="a" * 400, answer_text="b" * 40)
    assert usage.input_tokens == 100
    assert usage.output_tokens == 10
    assert usage.tokens_used == 110
    assert usage.cost_usd > 0
