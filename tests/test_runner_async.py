from __future__ import annotations

import asyncio

import pytest

from nback_trainer.clock import RealClock
from nback_trainer.cognitive_core import RoundPhase, RoundState
from nback_trainer.runner import AsyncRoundDriver, run_headless_round
from nback_trainer.session import LatestStateSink
from nback_trainer.trial_engine import RoundConfig, build_trial_engine


def _engine(**overrides):
    cfg = RoundConfig(**{"event_interval_ms": 50, "n": 2, "total_events": 8, "match_count": 3, **overrides})
    return build_trial_engine(clock=RealClock(), seed=21, config=cfg)


def test_headless_autoplay_round_scores_every_match() -> None:
    engine = _engine()
    seen: list[RoundState] = []

    final = asyncio.run(run_headless_round(engine, autoplay=True, on_state=seen.append))

    assert final.phase is RoundPhase.FINISHED
    assert final.correct_count == 3
    assert engine.high_score == 3
    opened = [s.current_index for s in seen if s.accepting_response and s.round_id == final.round_id]
    assert opened[:8] == list(range(8))


def test_headless_round_without_responses_scores_zero() -> None:
    engine = _engine(total_events=4, match_count=1)
    final = asyncio.run(run_headless_round(engine))
    assert final.phase is RoundPhase.FINISHED
    assert final.correct_count == 0
    assert len(engine.events()) == 4


def test_restart_replaces_running_round() -> None:
    engine = _engine(n=1)

    async def scenario() -> RoundState:
        driver = AsyncRoundDriver(engine)
        try:
            await driver.start()
            await asyncio.sleep(0.06)
            first_id = engine.snapshot().round_id
            await driver.start(sequence=[3, 3, 3])
            assert engine.snapshot().round_id == first_id + 1
            return await driver.wait_finished()
        finally:
            await driver.aclose()

    final = asyncio.run(scenario())
    assert final.phase is RoundPhase.FINISHED
    assert final.total_events == 3
    assert [e.index for e in engine.events()] == [0, 1, 2]


def test_stop_cancels_task_and_idles_engine() -> None:
    engine = _engine(event_interval_ms=200)

    async def scenario() -> AsyncRoundDriver:
        driver = AsyncRoundDriver(engine)
        await driver.start()
        await asyncio.sleep(0.02)
        assert driver.running
        await driver.stop()
        return driver

    driver = asyncio.run(scenario())
    assert driver.running is False
    assert engine.is_running is False
    assert engine.snapshot().phase is RoundPhase.IDLE


def test_idle_poll_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AsyncRoundDriver(_engine(), idle_poll_s=0.0)


def test_autoplay_keeps_other_subscribers_current() -> None:
    engine = _engine(n=1)
    sink = LatestStateSink()
    engine.subscribe(sink.on_round_state)

    final = asyncio.run(run_headless_round(engine, autoplay=True))

    assert final.correct_count == 3
    assert sink.state == final
