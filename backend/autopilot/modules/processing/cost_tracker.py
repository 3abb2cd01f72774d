"""LLM cost tracker: token counts and USD estimates per pipeline call.

Every LLM-backed agent records its usage here, tagged with the pipeline
stage (classification, extraction tier, correction, judgment), so the cost
of one document can be broken down by stage.

Usage:
    tracker = CostTracker()
    tracker.record("google", "gemini-2.5-flash", input_tokens=5000, output_tokens=800,
                   stage="extraction:fast", doc_type="INVOICE")
    tracker.summary()
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Pricing per 1M tokens (USD)
# ---------------------------------------------------------------------------

# (input, output, cache_write, cache_read)
_PRICING: dict[str, tuple[float, float, float, float]] = {
    "gemini-2.5-flash-lite": (0.10, 0.40, 0.025, 0.025),
    "gemini-2.5-flash": (0.30, 2.50, 0.075, 0.075),
    "gemini-2.5-pro": (1.25, 10.00, 0.3125, 0.3125),
    "claude-haiku-4-5": (1.00, 5.00, 1.25, 0.10),
    "claude-sonnet-4": (3.00, 15.00, 3.75, 0.30),
    "claude-opus-4": (15.00, 75.00, 18.75, 1.50),
}

_FALLBACK_PRICING = (3.00, 15.00, 3.75, 0.30)


def get_pricing(model: str) -> tuple[float, float, float, float]:
    """Pricing for a model; versioned names match their family prefix."""
    if model in _PRICING:
        return _PRICING[model]
    # Longest prefix first so "flash-lite" is not priced as "flash"
    for key in sorted(_PRICING, key=len, reverse=True):
        if model.startswith(key) or key in model:
            return _PRICING[key]
    logger.warning("CostTracker: unknown model pricing, using fallback", model=model)
    return _FALLBACK_PRICING


@dataclass
class TokenRecord:
    """Token usage of a single LLM call."""

    provider: str
    model: str
    stage: str = ""
    doc_type: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    duration_ms: int = 0
    cost_usd: float = 0.0
    timestamp: float = field(default_factory=time.time)

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens + self.output_tokens
            + self.cache_creation_tokens + self.cache_read_tokens
        )

    def compute_cost(self) -> None:
        input_price, output_price, cache_write_price, cache_read_price = get_pricing(self.model)
        self.cost_usd = (
            (self.input_tokens / 1_000_000) * input_price
            + (self.output_tokens / 1_000_000) * output_price
            + (self.cache_creation_tokens / 1_000_000) * cache_write_price
            + (self.cache_read_tokens / 1_000_000) * cache_read_price
        )


class CostTracker:
    """Accumulates token usage across calls (one document or a batch)."""

    def __init__(self) -> None:
        self.records: list[TokenRecord] = []

    def record(
        self,
        provider: str,
        model: str,
        *,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cache_creation_tokens: int = 0,
        cache_read_tokens: int = 0,
        stage: str = "",
        doc_type: str = "",
        duration_ms: int = 0,
    ) -> TokenRecord:
        rec = TokenRecord(
            provider=provider,
            model=model,
            stage=stage,
            doc_type=doc_type,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_creation_tokens=cache_creation_tokens,
            cache_read_tokens=cache_read_tokens,
            duration_ms=duration_ms,
        )
        rec.compute_cost()
        self.records.append(rec)

        logger.debug(
            "CostTracker: recorded",
            provider=provider,
            model=model,
            stage=stage,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=f"${rec.cost_usd:.4f}",
        )
        return rec

    @property
    def total_cost_usd(self) -> float:
        return sum(r.cost_usd for r in self.records)

    def summary(self) -> dict[str, Any]:
        by_stage: dict[str, dict[str, Any]] = defaultdict(
            lambda: {"calls": 0, "total_tokens": 0, "cost_usd": 0.0, "duration_ms": 0}
        )
        for rec in self.records:
            s = by_stage[rec.stage or "unspecified"]
            s["calls"] += 1
            s["total_tokens"] += rec.total_tokens
            s["cost_usd"] += rec.cost_usd
            s["duration_ms"] += rec.duration_ms

        return {
            "calls": len(self.records),
            "total_tokens": sum(r.total_tokens for r in self.records),
            "total_cost_usd": round(self.total_cost_usd, 4),
            "stages": {
                stage: {**values, "cost_usd": round(values["cost_usd"], 4)}
                for stage, values in by_stage.items()
            },
        }
