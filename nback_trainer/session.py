from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from .cognitive_core import Modality, ResponseOutcome, RoundState, ScoreState
from .trial_engine import TrialEngine

logger = logging.getLogger(__name__)


class RenderSink(Protocol):
    """Consumer of engine state. Called once per change; must return quickly."""

    def on_round_state(self, state: RoundState) -> None: ...
    def on_score(self, score: ScoreState) -> None: ...


class LatestStateSink:
    """Render sink that just keeps the most recent values for a frame loop."""

    def __init__(self) -> None:
        self.state = RoundState()
        self.score = ScoreState()
        self.updates = 0

    def on_round_state(self, state: RoundState) -> None:
        self.state = state
        self.updates += 1

    def on_score(self, score: ScoreState) -> None:
        self.score = score


class SessionController:
    """Owns one TrialEngine and wires it to a display surface.

    UI triggers (start round with a modality, respond, stop) are forwarded
    to the engine; engine state flows out to the render sink.
    """

    def __init__(self, *, engine: TrialEngine, sink: RenderSink) -> None:
        self._engine = engine
        self._sink = sink
        self._unsubscribers: list[Callable[[], None]] = [
            engine.subscribe(sink.on_round_state),
            engine.subscribe_score(sink.on_score),
        ]

    @property
    def engine(self) -> TrialEngine:
        return self._engine

    @property
    def high_score(self) -> int:
        return self._engine.high_score

    def start_round(self, modality: Modality | None = None) -> None:
        if modality is not None:
            self._engine.set_modality(modality)
        self._engine.start()

    def respond(self) -> ResponseOutcome:
        return self._engine.respond()

    def stop(self) -> None:
        self._engine.stop()

    def update(self) -> None:
        self._engine.update()

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._engine.stop()
        logger.debug("Session closed")
