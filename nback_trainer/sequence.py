"""Stimulus sequence generation for the n-back round.

The generator places an exact number of n-back matches: match positions are
sampled up front, and every non-match position draws from the symbol set with
the n-back value removed, so no match can appear by chance.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from .cognitive_core import ConfigError, SeededRng, new_seed


def normalize_symbol(raw: int, symbol_count: int) -> int:
    """Floor-modulo a raw value into ``[0, symbol_count)``.

    Python's ``%`` with a positive divisor never returns a negative result,
    so ``-1`` maps to ``symbol_count - 1``.
    """

    if symbol_count < 1:
        raise ConfigError("symbol_count must be >= 1")
    return int(raw) % symbol_count


def normalize_sequence(raws: Iterable[int], symbol_count: int) -> tuple[int, ...]:
    return tuple(normalize_symbol(v, symbol_count) for v in raws)


def match_indices(sequence: Sequence[int], n: int) -> tuple[int, ...]:
    return tuple(i for i in range(n, len(sequence)) if sequence[i] == sequence[i - n])


def count_matches(sequence: Sequence[int], n: int) -> int:
    return len(match_indices(sequence, n))


def validate_parameters(*, total_events: int, symbol_count: int, match_count: int, n: int) -> None:
    if n < 1:
        raise ConfigError("n must be >= 1")
    if total_events <= n:
        raise ConfigError("total_events must be > n")
    if symbol_count < 2:
        raise ConfigError("symbol_count must be >= 2")
    if not 0 <= match_count <= total_events - n:
        raise ConfigError(f"match_count must be in [0, {total_events - n}]")


def match_count_for_rate(*, total_events: int, n: int, match_rate: float) -> int:
    """Number of matches for a target rate over the eligible (i >= n) events."""

    eligible = max(0, total_events - n)
    count = int(round(float(match_rate) * eligible))
    return max(0, min(eligible, count))


class SequenceGenerator:
    """Random n-back sequences with an exact match count."""

    def __init__(self, *, seed: int | None = None) -> None:
        self._seed = new_seed() if seed is None else int(seed)
        self._rng = SeededRng(self._seed)

    @property
    def seed(self) -> int:
        return self._seed

    def generate(
        self,
        *,
        total_events: int,
        symbol_count: int,
        match_count: int,
        n: int,
    ) -> tuple[int, ...]:
        validate_parameters(
            total_events=total_events,
            symbol_count=symbol_count,
            match_count=match_count,
            n=n,
        )

        eligible = range(n, total_events)
        chosen = set(self._rng.sample(eligible, match_count))

        seq: list[int] = [self._rng.randrange(symbol_count) for _ in range(n)]
        for i in eligible:
            back = seq[i - n]
            if i in chosen:
                seq.append(back)
                continue
            # Uniform over the other symbol_count - 1 values.
            pick = self._rng.randrange(symbol_count - 1)
            if pick >= back:
                pick += 1
            seq.append(pick)

        return normalize_sequence(seq, symbol_count)
