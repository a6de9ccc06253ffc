from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from vaultrag.core.config import get_settings


@dataclass(frozen=True)
class UsageEstimate:
    # Token and cost figures logged with every AI interaction.
    input_tokens: int
    output_tokens: int
    cost_usd: float

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


def estimate_tokens(text: str, *, ratio: float) -> int:
    # Deterministically estimate token counts when provider metadata is missing.
    if not text:
        return 0
    return max(1, int(len(text) / max(ratio, 0.1)))


def _to_decimal(value: float | int | Decimal) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def calculate_cost(*, input_tokens: int, output_tokens: int) -> Decimal:
    # Apply per-1k token prices; rounded to micro-dollars for stable sums.
    settings = get_settings()
    cost = (_to_decimal(input_tokens) / Decimal("1000")) * _to_decimal(settings.llm_input_cost_per_1k_usd)
    cost += (_to_decimal(output_tokens) / Decimal("1000")) * _to_decimal(settings.llm_output_cost_per_1k_usd)
    return cost.quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP)


def estimate_usage(*, prompt_text: str, answer_text: str) -> UsageEstimate:
    ratio = get_settings().token_estimator_ratio
    input_tokens = estimate_tokens(prompt_text, ratio=ratio)
    output_tokens = estimate_tokens(answer_text, ratio=ratio)
    cost = calculate_cost(input_tokens=input_tokens, output_tokens=output_tokens)
    return UsageEstimate(input_tokens=input_tokens, output_tokens=output_tokens, cost_usd=float(cost))
