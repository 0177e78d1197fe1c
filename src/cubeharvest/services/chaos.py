"""Chaos injector: deletes a random running unit every so often."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from cubeharvest.domain.enums import IntentOrigin
from cubeharvest.domain.messages import DeleteIntent
from cubeharvest.domain.models import WorldSnapshot
from cubeharvest.domain.rules_config import ChaosRules
from cubeharvest.utils.rng import (
    generate_seed,
    new_session_seed,
    random_choice,
    random_uniform,
)

logger = logging.getLogger(__name__)


class ChaosInjector:
    """Scheduler posting chaos ``DeleteIntent`` messages.

    The injector only reads snapshots; the loop decides whether the target is
    still eligible when the intent is applied.
    """

    def __init__(
        self,
        post: Callable[[object], None],
        snapshot: Callable[[], WorldSnapshot],
        *,
        rules: ChaosRules = ChaosRules(),
    ) -> None:
        self._post = post
        self._snapshot = snapshot
        self._enabled = rules.enabled
        self._min_interval = rules.min_interval_seconds
        self._max_interval = rules.max_interval_seconds
        self.session = rules.seed if rules.seed is not None else new_session_seed()
        self._interval_draws = 0
        self._target_draws = 0
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self.last_draw: dict[str, object] | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def min_interval_seconds(self) -> float:
        return self._min_interval

    @property
    def max_interval_seconds(self) -> float:
        return self._max_interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        logger.info("chaos %s", "enabled" if enabled else "paused")

    def set_bounds(self, min_seconds: float, max_seconds: float) -> None:
        if min_seconds <= 0 or min_seconds > max_seconds:
            raise ValueError(
                f"invalid chaos interval bounds [{min_seconds}, {max_seconds}]"
            )
        self._min_interval = min_seconds
        self._max_interval = max_seconds

    def next_interval(self) -> float:
        """Draw the wait before the next firing from ``[min, max]``."""

        seed = generate_seed(self.session, self._interval_draws, "chaos_interval")
        self._interval_draws += 1
        return random_uniform(seed, self._min_interval, self._max_interval)["value"]

    def pick_target(self, snapshot: WorldSnapshot) -> str | None:
        """Choose one running unit uniformly, or None when there is nothing to hit."""

        if snapshot.degraded:
            return None
        candidates = sorted(view.id for view in snapshot.running_units())
        if not candidates:
            return None
        seed = generate_seed(self.session, self._target_draws, "chaos_target")
        self._target_draws += 1
        draw = random_choice(seed, candidates)
        self.last_draw = draw
        return draw["choice"]

    def fire_once(self) -> DeleteIntent | None:
        target = self.pick_target(self._snapshot())
        if target is None:
            logger.debug("chaos found no running unit to delete")
            return None
        intent = DeleteIntent(unit_id=target, origin=IntentOrigin.CHAOS)
        self._post(intent)
        logger.info("chaos strikes %s", target)
        return intent

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run_loop(), name="cubeharvest-chaos")

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._stop_event.set()
        await task
        self._task = None

    async def _run_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.next_interval())
                    break
                except TimeoutError:
                    pass
                if self._enabled:
                    self.fire_once()
        finally:
            self._task = None
