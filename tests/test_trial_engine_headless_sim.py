from __future__ import annotations

from dataclasses import dataclass

import pytest

from nback_trainer.cognitive_core import Modality, ResponseOutcome, RoundPhase
from nback_trainer.persistence import InMemoryHighScores
from nback_trainer.results import format_round_result, round_result_from_engine
from nback_trainer.sequence import SequenceGenerator, count_matches
from nback_trainer.trial_engine import RoundConfig, build_trial_engine


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _drive_round(
    *,
    clock: FakeClock,
    engine: object,
    respond_at: set[int] | None = None,
    frame_s: float = 1.0 / 60.0,
    max_steps: int = 20000,
) -> None:
    """Step the engine like a 60 Hz frame loop, pressing MATCH on chosen events."""

    pressed: set[int] = set()
    for _ in range(max_steps):
        clock.advance(frame_s)
        engine.update()
        snap = engine.snapshot()
        if snap.phase is RoundPhase.FINISHED:
            return
        if not snap.accepting_response:
            continue
        i = snap.current_index
        seq = engine.sequence
        wanted = (i >= snap.n and seq[i] == seq[i - snap.n]) if respond_at is None else i in respond_at
        if wanted and i not in pressed:
            pressed.add(i)
            engine.respond()

    raise AssertionError(f"Round did not finish in {max_steps} steps")


def test_perfect_responder_scores_every_match() -> None:
    clock = FakeClock()
    store = InMemoryHighScores(0)
    cfg = RoundConfig(n=2, total_events=20, symbol_count=9, match_count=6, event_interval_ms=500)
    engine = build_trial_engine(clock=clock, seed=441, high_scores=store, config=cfg)

    engine.start()
    _drive_round(clock=clock, engine=engine)

    result = round_result_from_engine(engine)
    assert result.presented == 20
    assert result.matches == 6
    assert result.correct == 6
    assert result.false_alarms == 0
    assert result.missed_matches == 0
    assert result.hit_rate == pytest.approx(1.0)
    assert result.mean_rt_ms is not None
    assert store.writes == [6]


def test_scripted_run_with_mirror_generator_is_deterministic() -> None:
    seed = 99
    cfg = RoundConfig(n=3, total_events=15, symbol_count=9, match_count=4, event_interval_ms=400)

    mirror = SequenceGenerator(seed=seed)
    expected = mirror.generate(total_events=15, symbol_count=9, match_count=4, n=3)

    runs = []
    for _ in range(2):
        clock = FakeClock()
        engine = build_trial_engine(clock=clock, seed=seed, config=cfg)
        engine.start()
        assert engine.sequence == expected
        _drive_round(clock=clock, engine=engine, respond_at={3, 4, 5, 9, 10})
        runs.append([(e.index, e.outcome, e.response_time_s) for e in engine.events()])

    assert runs[0] == runs[1]


def test_responding_everywhere_counts_hits_and_false_alarms() -> None:
    clock = FakeClock()
    cfg = RoundConfig(n=1, total_events=12, symbol_count=4, match_count=5, event_interval_ms=250)
    engine = build_trial_engine(clock=clock, seed=3, config=cfg)
    engine.start()
    _drive_round(clock=clock, engine=engine, respond_at=set(range(12)))

    result = round_result_from_engine(engine)
    assert count_matches(engine.sequence, 1) == 5
    assert result.correct == 5
    assert result.false_alarms == 12 - 1 - 5
    assert result.missed_matches == 0
    scored = [e for e in result.events if e.outcome is not ResponseOutcome.IGNORED]
    assert len(scored) == 11


def test_silent_round_produces_no_score_and_keeps_high_score() -> None:
    clock = FakeClock()
    store = InMemoryHighScores(3)
    cfg = RoundConfig(modality=Modality.SPATIAL, event_interval_ms=300)
    engine = build_trial_engine(clock=clock, seed=8, high_scores=store, config=cfg)
    engine.start()
    _drive_round(clock=clock, engine=engine, respond_at=set())

    result = round_result_from_engine(engine)
    assert result.correct == 0
    assert result.missed_matches == result.matches
    assert result.mean_rt_ms is None
    assert store.writes == []

    text = format_round_result(result, high_score=engine.high_score)
    assert "Correct: 0" in text
    assert "High score: 3" in text
