"""Unit tests for the perception ensemble (fast + expert extraction)."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeExtractor

from autopilot.modules.processing.agents.ensemble import PerceptionEnsemble
from autopilot.modules.processing.agents.extractors import ExtractionError


class SlowExtractor(FakeExtractor):
    def __init__(self, result, delay: float) -> None:
        super().__init__(result)
        self.delay = delay

    async def extract(self, images):
        await asyncio.sleep(self.delay)
        return await super().extract(images)


@pytest.mark.parametrize("parallel", [True, False])
async def test_both_tiers_succeed(images, make_invoice, parallel: bool) -> None:
    fast, expert = FakeExtractor(make_invoice(confidence=0.8)), FakeExtractor(make_invoice())

    result = await PerceptionEnsemble(fast, expert, parallel=parallel).extract(images)

    assert result.fast_candidate.confidence == 0.8
    assert result.expert_candidate.confidence == 0.95
    assert result.fast_error is None and result.expert_error is None
    assert (fast.calls, expert.calls) == (1, 1)


async def test_failing_tier_does_not_sink_the_other(images, make_invoice) -> None:
    fast = FakeExtractor(error=ExtractionError("unparseable"))
    expert = FakeExtractor(make_invoice())

    result = await PerceptionEnsemble(fast, expert).extract(images)

    assert result.has_any_candidate
    assert result.fast_candidate is None
    assert isinstance(result.fast_error, ExtractionError)
    assert result.expert_candidate is not None


async def test_sequential_mode_still_runs_expert_after_fast_failure(images, make_invoice) -> None:
    fast = FakeExtractor(error=RuntimeError("quota exceeded"))
    expert = FakeExtractor(make_invoice())

    result = await PerceptionEnsemble(fast, expert, parallel=False).extract(images)

    assert expert.calls == 1
    assert result.expert_candidate is not None


async def test_both_tiers_fail(images) -> None:
    fast = FakeExtractor(error=RuntimeError("fast down"))
    expert = FakeExtractor(error=ExtractionError("expert down"))

    result = await PerceptionEnsemble(fast, expert).extract(images)

    assert not result.has_any_candidate
    assert str(result.fast_error) == "fast down"
    assert str(result.expert_error) == "expert down"


async def test_timeout_counts_as_tier_failure(images, make_invoice) -> None:
    fast = SlowExtractor(make_invoice(), delay=1.0)
    expert = FakeExtractor(make_invoice())

    result = await PerceptionEnsemble(fast, expert, timeout_seconds=0.01).extract(images)

    assert isinstance(result.fast_error, asyncio.TimeoutError)
    assert result.expert_candidate is not None


async def test_cancellation_propagates(images, make_invoice) -> None:
    ensemble = PerceptionEnsemble(SlowExtractor(make_invoice(), delay=1.0), SlowExtractor(make_invoice(), delay=1.0))
    task = asyncio.create_task(ensemble.extract(images))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
