from __future__ import annotations

from dataclasses import dataclass

from .cognitive_core import Modality, ResponseEvent, ResponseOutcome
from .trial_engine import TrialEngine


@dataclass(frozen=True, slots=True)
class RoundResult:
    """Summary + event log for one finished (or stopped) round.

    ``correct`` is the engine's score: hits only. The signal-detection
    counts are derived from the per-event log.
    """

    round_id: int
    modality: Modality
    n: int
    total_events: int
    presented: int

    matches: int
    correct: int
    false_alarms: int
    missed_matches: int
    hit_rate: float
    mean_rt_ms: float | None
    median_rt_ms: float | None

    events: list[ResponseEvent]


def round_result_from_engine(engine: TrialEngine) -> RoundResult:
    state = engine.snapshot()
    events = engine.events()

    matches = sum(1 for e in events if e.is_match)
    hits = sum(1 for e in events if e.outcome is ResponseOutcome.HIT)
    false_alarms = sum(1 for e in events if e.outcome is ResponseOutcome.MISS)
    missed = sum(1 for e in events if e.is_match and not e.responded)
    hit_rate = 0.0 if matches == 0 else hits / float(matches)

    rts_ms = sorted(
        int(round(e.response_time_s * 1000.0))
        for e in events
        if e.response_time_s is not None
    )

    mean_ms: float | None
    median_ms: float | None
    if not rts_ms:
        mean_ms = None
        median_ms = None
    else:
        mean_ms = float(sum(rts_ms)) / float(len(rts_ms))
        mid = len(rts_ms) // 2
        if len(rts_ms) % 2 == 1:
            median_ms = float(rts_ms[mid])
        else:
            median_ms = float(rts_ms[mid - 1] + rts_ms[mid]) / 2.0

    return RoundResult(
        round_id=int(state.round_id),
        modality=state.modality,
        n=int(state.n),
        total_events=int(state.total_events),
        presented=len(events),
        matches=matches,
        correct=int(state.correct_count),
        false_alarms=false_alarms,
        missed_matches=missed,
        hit_rate=hit_rate,
        mean_rt_ms=mean_ms,
        median_rt_ms=median_ms,
        events=events,
    )


def format_round_result(result: RoundResult, *, high_score: int) -> str:
    rt = "n/a" if result.mean_rt_ms is None else f"{result.mean_rt_ms:.0f} ms"
    return (
        f"Round {result.round_id} ({result.modality.value}, {result.n}-back)\n"
        f"Events: {result.presented} / {result.total_events}\n"
        f"Correct: {result.correct} of {result.matches} matches\n"
        f"False alarms: {result.false_alarms}\n"
        f"Missed matches: {result.missed_matches}\n"
        f"Mean RT: {rt}\n"
        f"High score: {high_score}"
    )
