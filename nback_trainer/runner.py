"""asyncio driver for a TrialEngine.

One asyncio task per round calls ``engine.update()`` and sleeps until the
engine's next deadline. Starting a new round cancels and awaits the previous
task first, so two presentation loops never run at once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from .cognitive_core import ResponseOutcome, RoundState
from .trial_engine import TrialEngine

logger = logging.getLogger(__name__)


class AsyncRoundDriver:
    def __init__(
        self,
        engine: TrialEngine,
        *,
        idle_poll_s: float = 0.05,
        on_state: Callable[[RoundState], None] | None = None,
    ) -> None:
        if idle_poll_s <= 0.0:
            raise ValueError("idle_poll_s must be > 0")
        self._engine = engine
        self._idle_poll_s = float(idle_poll_s)
        self._task: asyncio.Task[None] | None = None
        self._unsubscribe = engine.subscribe(on_state) if on_state is not None else None

    @property
    def engine(self) -> TrialEngine:
        return self._engine

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, *, sequence: Sequence[int] | None = None) -> None:
        await self.stop()
        self._engine.start(sequence=sequence)
        self._task = asyncio.create_task(self._pump(), name=f"nback-round-{self._engine.snapshot().round_id}")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._engine.stop()

    async def wait_finished(self) -> RoundState:
        task = self._task
        if task is not None:
            await task
        return self._engine.snapshot()

    def respond(self) -> ResponseOutcome:
        return self._engine.respond()

    async def aclose(self) -> None:
        await self.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _pump(self) -> None:
        engine = self._engine
        round_id = engine.snapshot().round_id
        while True:
            engine.update()
            state = engine.snapshot()
            if state.round_id != round_id or not state.is_running:
                break
            wait_s = engine.seconds_until_next_transition()
            if wait_s is None:
                wait_s = self._idle_poll_s
            await asyncio.sleep(wait_s)
        logger.debug("Round %d task exiting", round_id)


async def run_headless_round(
    engine: TrialEngine,
    *,
    autoplay: bool = False,
    on_state: Callable[[RoundState], None] | None = None,
) -> RoundState:
    """Run one complete round; with ``autoplay`` respond to every true match."""

    def _react(state: RoundState) -> None:
        if on_state is not None:
            on_state(state)
        if not autoplay or not state.accepting_response:
            return
        i = state.current_index
        seq = engine.sequence
        if i >= state.n and seq[i] == seq[i - state.n]:
            engine.respond()

    driver = AsyncRoundDriver(engine, on_state=_react)
    try:
        await driver.start()
        return await driver.wait_finished()
    finally:
        await driver.aclose()
