"""Agent 2a: Perception Ensemble.

Runs the fast-tier and expert-tier extraction agents over the same page
images and hands both outcomes to the consensus engine.  A failing tier
never takes the other one down with it: its exception is captured and the
surviving candidate still goes forward.
"""

from __future__ import annotations

import asyncio
import time
from typing import Generic

import structlog

from autopilot.modules.processing.agent_schemas import EnsembleResult, T
from autopilot.modules.processing.agents.extractors import ExtractionAgent
from autopilot.modules.processing.schemas import PageImage

logger = structlog.get_logger()


class PerceptionEnsemble(Generic[T]):
    """Agent 2a: fast + expert extraction of one document.

    Args:
        fast_agent: Cheap, quick model.
        expert_agent: Slower, more accurate model.
        parallel: Run both tiers concurrently (default) or fast then expert.
        timeout_seconds: Per-tier deadline; a timeout counts as that tier failing.
    """

    agent_name = "Ensemble"

    def __init__(
        self,
        fast_agent: ExtractionAgent[T],
        expert_agent: ExtractionAgent[T],
        *,
        parallel: bool = True,
        timeout_seconds: float | None = None,
    ) -> None:
        self.fast_agent = fast_agent
        self.expert_agent = expert_agent
        self.parallel = parallel
        self.timeout_seconds = timeout_seconds

    async def extract(self, images: list[PageImage]) -> EnsembleResult[T]:
        start = time.time()

        if self.parallel:
            fast_outcome, expert_outcome = await asyncio.gather(
                self._run("fast", self.fast_agent, images),
                self._run("expert", self.expert_agent, images),
                return_exceptions=True,
            )
        else:
            fast_outcome = await self._capture(self._run("fast", self.fast_agent, images))
            expert_outcome = await self._capture(self._run("expert", self.expert_agent, images))

        for outcome in (fast_outcome, expert_outcome):
            # A tier cancelled on its own is still a cancellation
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome

        result: EnsembleResult[T] = EnsembleResult(
            fast_candidate=None if isinstance(fast_outcome, BaseException) else fast_outcome,
            expert_candidate=None if isinstance(expert_outcome, BaseException) else expert_outcome,
            fast_error=fast_outcome if isinstance(fast_outcome, BaseException) else None,
            expert_error=expert_outcome if isinstance(expert_outcome, BaseException) else None,
        )

        logger.info(
            "Ensemble: extraction complete",
            parallel=self.parallel,
            fast_ok=result.fast_candidate is not None,
            expert_ok=result.expert_candidate is not None,
            duration_ms=int((time.time() - start) * 1000),
        )
        return result

    async def _run(self, tier: str, agent: ExtractionAgent[T], images: list[PageImage]) -> T:
        try:
            if self.timeout_seconds is not None:
                return await asyncio.wait_for(agent.extract(images), self.timeout_seconds)
            return await agent.extract(images)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Ensemble: tier failed",
                tier=tier,
                agent=agent.agent_name,
                error=str(e) or type(e).__name__,
            )
            raise

    @staticmethod
    async def _capture(coro) -> T | BaseException:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return e
