"""
Invigilator Engine - Countdown timers

One periodic asyncio task per rule with a running countdown. Timers are
cancelled, not ignored, when their rule resets.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from invigilator.utils.alerts import RuleId
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)


class RuleTimers:
    """
    Per-rule 1-second tick tasks.

    Example:
        >>> timers = RuleTimers(tick_seconds=1.0)
        >>> timers.start(RuleId.CAMERA_ABSENCE, lambda: engine.dispatch(TimerTick(RuleId.CAMERA_ABSENCE)))
        >>> timers.cancel(RuleId.CAMERA_ABSENCE)
    """

    def __init__(self, tick_seconds: float = 1.0):
        self.tick_seconds = tick_seconds
        self._tasks: dict[RuleId, asyncio.Task] = {}

    def start(self, rule_id: RuleId, on_tick: Callable[[], None]) -> None:
        """Start ticking for a rule, replacing any timer it already had."""
        self.cancel(rule_id)
        self._tasks[rule_id] = asyncio.create_task(
            self._run(rule_id, on_tick),
            name=f"countdown-{rule_id.value}",
        )

    async def _run(self, rule_id: RuleId, on_tick: Callable[[], None]) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            try:
                on_tick()
            except Exception as e:
                logger.error(f"❌ Countdown tick failed for {rule_id.value}: {e}")

    def cancel(self, rule_id: RuleId) -> None:
        """Cancel a rule's timer. Unknown or finished timers are ignored."""
        task = self._tasks.pop(rule_id, None)
        if task is not None and not task.done():
            task.cancel()

    def cancel_all(self) -> None:
        for rule_id in list(self._tasks):
            self.cancel(rule_id)

    def is_running(self, rule_id: RuleId) -> bool:
        task = self._tasks.get(rule_id)
        return task is not None and not task.done()

    @property
    def active(self) -> set[RuleId]:
        """Rules whose timer is still running."""
        return {rule_id for rule_id, task in self._tasks.items() if not task.done()}
