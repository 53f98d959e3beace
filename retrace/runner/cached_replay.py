"""
Replays the recorded actions of the latest passing run.

Before every mouse movement the element currently under the pointer is
fingerprinted and compared with the fingerprint recorded during the live
run. Any difference aborts the replay so the caller can fall back to the
decider.
"""

import asyncio
from typing import List, Optional

from pydantic import ValidationError

from retrace.core.actions import ActionType, MouseMoveAction, parse_action_input
from retrace.core.interfaces import ActionExecutor
from retrace.core.types import CacheStep
from retrace.error_handling import CacheError, get_error_details
from retrace.monitoring.logger import get_logger, log_test_event
from retrace.runner.repository import TestRunRepository
from retrace.runner.test_run import TestRun

logger = get_logger(__name__)

REPLAY_SUCCESS_REASON = "All actions successfully replayed from cache"


def replayable_steps(steps: List[CacheStep]) -> List[CacheStep]:
    """Drop screenshot steps; they only fed the decider."""
    return [
        step
        for step in steps
        if step.action is None
        or step.action.action_name != ActionType.SCREENSHOT.value
    ]


class CachedReplayer:
    """Drives the executor through a previously recorded run."""

    def __init__(
        self,
        executor: ActionExecutor,
        repository: Optional[TestRunRepository] = None,
        step_delay_ms: int = 1000,
    ):
        self.executor = executor
        self.repository = repository
        self.step_delay_ms = step_delay_ms

    async def replay(self, test_run: TestRun) -> None:
        """
        Replay the latest passed run onto ``test_run``.

        Raises:
            CacheError: "not-found" when nothing can be replayed, "invalid"
                when the recording is empty or no longer matches the UI
        """
        repository = self.repository or TestRunRepository.for_test_case(
            test_run.test_case
        )
        cached_run = repository.get_latest_passed_run()
        if cached_run is None:
            raise CacheError("not-found", "No cached run available")

        steps = replayable_steps(cached_run.get_steps())
        if not steps:
            raise CacheError("invalid", "Cached run has no replayable steps")

        logger.info(
            f"Replaying {len(steps)} cached steps for '{test_run.test_case.name}'",
            extra={"run_id": test_run.run_id, "cached_run_id": cached_run.run_id},
        )

        for index, step in enumerate(steps):
            await asyncio.sleep(self.step_delay_ms / 1000)
            await self._replay_step(step, index)

        test_run.mark_passed_from_cache(REPLAY_SUCCESS_REASON)
        log_test_event(
            "cache_hit",
            test_run.test_case.identifier,
            run_id=test_run.run_id,
            data={"cached_run_id": cached_run.run_id, "step_count": len(steps)},
        )

    async def _replay_step(self, step: CacheStep, index: int) -> None:
        if step.action is None:
            return

        try:
            action = parse_action_input(step.action.input)
        except ValidationError as e:
            raise CacheError(
                "invalid", f"Cached step {index} has an invalid action", cause=e
            ) from e

        if isinstance(action, MouseMoveAction):
            x, y = action.coordinate
            try:
                fingerprint = await self.executor.get_fingerprint(x, y)
            except Exception as e:
                logger.debug(
                    f"Fingerprint of cached step {index} failed",
                    extra=get_error_details(e),
                )
                raise CacheError(
                    "invalid", "Error reading UI element fingerprint", cause=e
                ) from e
            if fingerprint != step.fingerprint:
                logger.info(
                    "UI element mismatch, invalidating cache",
                    extra={
                        "step_index": index,
                        "expected_fingerprint": step.fingerprint,
                        "actual_fingerprint": fingerprint,
                    },
                )
                raise CacheError("invalid", "UI element mismatch")

        try:
            result = await self.executor.execute(action)
        except Exception as e:
            logger.debug(
                f"Cached step {index} failed", extra=get_error_details(e)
            )
            raise CacheError(
                "invalid", "Error executing cached step", cause=e
            ) from e

        if result is not None and result.error:
            logger.debug(
                f"Cached step {index} reported an error",
                extra={"step_index": index, "output": result.output},
            )
            raise CacheError("invalid", "Error executing cached step")
