from __future__ import annotations

import random
import string
from dataclasses import dataclass
from enum import StrEnum
from typing import Sequence


class ConfigError(ValueError):
    """Invalid round parameters. The round does not begin."""


class CollaboratorFailure(RuntimeError):
    """A speech or persistence collaborator failed. Logged, never fatal."""


class Modality(StrEnum):
    SPATIAL = "spatial"
    AUDITORY = "auditory"


class Feedback(StrEnum):
    NONE = "none"
    HIT = "hit"
    MISS = "miss"


class ResponseOutcome(StrEnum):
    IGNORED = "ignored"  # window closed, too early, or no round
    HIT = "hit"
    MISS = "miss"


class RoundPhase(StrEnum):
    IDLE = "idle"
    WAITING_FOR_SPEECH = "waiting_for_speech"
    PRESENTING = "presenting"
    FINISHED = "finished"


@dataclass(frozen=True, slots=True)
class RoundState:
    """View model for the render sink (pure data)."""

    modality: Modality = Modality.SPATIAL
    n: int = 2
    current_index: int = -1
    current_value: int = -1
    total_events: int = 0
    correct_count: int = 0
    accepting_response: bool = False
    last_feedback: Feedback = Feedback.NONE
    is_running: bool = False
    phase: RoundPhase = RoundPhase.IDLE
    round_id: int = 0


@dataclass(frozen=True, slots=True)
class ScoreState:
    score: int = 0
    high_score: int = 0


@dataclass(frozen=True, slots=True)
class ResponseEvent:
    """What happened during one event's acceptance window."""

    index: int
    value: int
    is_match: bool
    responded: bool
    outcome: ResponseOutcome
    presented_at_s: float
    response_time_s: float | None = None


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def randrange(self, stop: int) -> int:
        return self._rng.randrange(stop)

    def sample(self, population: Sequence[int], k: int) -> list[int]:
        return self._rng.sample(population, k)


def new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


LETTERS: tuple[str, ...] = tuple(string.ascii_uppercase)


def symbol_label(value: int) -> str:
    """Spoken/displayed letter for a stimulus value (0 -> 'A')."""

    if not 0 <= value < len(LETTERS):
        raise ValueError(f"no letter for stimulus value {value}")
    return LETTERS[value]
