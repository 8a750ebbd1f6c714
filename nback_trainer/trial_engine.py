from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from enum import StrEnum

from .clock import Clock
from .cognitive_core import (
    LETTERS,
    CollaboratorFailure,
    ConfigError,
    Feedback,
    Modality,
    ResponseEvent,
    ResponseOutcome,
    RoundPhase,
    RoundState,
    ScoreState,
    symbol_label,
)
from .persistence import HighScoreRepository
from .sequence import (
    SequenceGenerator,
    match_count_for_rate,
    normalize_sequence,
    validate_parameters,
)
from .speech import SpeechCollaborator

logger = logging.getLogger(__name__)

RoundStateListener = Callable[[RoundState], None]
ScoreListener = Callable[[ScoreState], None]


@dataclass(frozen=True, slots=True)
class RoundConfig:
    modality: Modality = Modality.SPATIAL
    n: int = 2
    total_events: int = 10
    symbol_count: int = 9
    match_count: int | None = None  # None -> derived from match_rate
    match_rate: float = 0.30
    event_interval_ms: int = 2000

    # Auditory rounds wait at most polls * interval for the speaker.
    speech_ready_polls: int = 5
    speech_poll_interval_ms: int = 200

    def resolved_match_count(self) -> int:
        if self.match_count is not None:
            return int(self.match_count)
        return match_count_for_rate(total_events=self.total_events, n=self.n, match_rate=self.match_rate)

    def validate(self) -> None:
        validate_parameters(
            total_events=self.total_events,
            symbol_count=self.symbol_count,
            match_count=self.resolved_match_count(),
            n=self.n,
        )
        if not 0.0 <= self.match_rate <= 1.0:
            raise ConfigError("match_rate must be in [0.0, 1.0]")
        if self.event_interval_ms <= 0:
            raise ConfigError("event_interval_ms must be > 0")
        if self.speech_ready_polls < 0:
            raise ConfigError("speech_ready_polls must be >= 0")
        if self.speech_poll_interval_ms <= 0:
            raise ConfigError("speech_poll_interval_ms must be > 0")
        if self.modality is Modality.AUDITORY and self.symbol_count > len(LETTERS):
            raise ConfigError(f"auditory rounds support at most {len(LETTERS)} symbols")


class _Step(StrEnum):
    POLL_SPEECH = "poll_speech"
    OPEN = "open"
    CLOSE = "close"


class TrialEngine:
    """Timed n-back round: present, accept one response per event, score.

    The presentation loop is a chain of clock deadlines advanced by update(),
    so the same engine runs under a pygame frame loop, an asyncio task, or a
    test that moves a fake clock. All state changes happen under one lock;
    listeners are notified after it is released, in publication order.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int | None = None,
        speech: SpeechCollaborator | None = None,
        high_scores: HighScoreRepository | None = None,
        config: RoundConfig | None = None,
    ) -> None:
        cfg = config or RoundConfig()
        cfg.validate()

        self._clock = clock
        self._generator = SequenceGenerator(seed=seed)
        self._speech = speech
        self._high_scores = high_scores

        self._config = cfg
        self._round_config = cfg

        self._lock = threading.RLock()
        self._notify_lock = threading.Lock()
        self._flushing_thread: int | None = None
        self._outbox: list[RoundState | ScoreState] = []
        self._listeners: list[RoundStateListener] = []
        self._score_listeners: list[ScoreListener] = []

        self._sequence: tuple[int, ...] = ()
        self._events: list[ResponseEvent] = []
        self._round_id = 0

        self._step: _Step | None = None
        self._deadline_s: float | None = None
        self._index = -1
        self._speech_polls = 0
        self._opened_at_s = 0.0
        self._response: ResponseOutcome = ResponseOutcome.IGNORED
        self._responded_at_s: float | None = None

        self._state = RoundState(modality=cfg.modality, n=cfg.n, total_events=cfg.total_events)
        self._high_score = self._load_high_score()
        self._score = ScoreState(score=0, high_score=self._high_score)

    # -- observation --------------------------------------------------------

    @property
    def config(self) -> RoundConfig:
        return self._config

    @property
    def sequence(self) -> tuple[int, ...]:
        return self._sequence

    @property
    def high_score(self) -> int:
        return self._high_score

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    def snapshot(self) -> RoundState:
        return self._state

    def score_state(self) -> ScoreState:
        return self._score

    def events(self) -> list[ResponseEvent]:
        with self._lock:
            return list(self._events)

    def seconds_until_next_transition(self) -> float | None:
        with self._lock:
            if self._deadline_s is None:
                return None
            return max(0.0, self._deadline_s - self._clock.now())

    def subscribe(self, listener: RoundStateListener) -> Callable[[], None]:
        """Register for round-state changes; the current state is delivered at once."""

        with self._lock:
            self._listeners.append(listener)
            current = self._state
        self._deliver(listener, current)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def subscribe_score(self, listener: ScoreListener) -> Callable[[], None]:
        with self._lock:
            self._score_listeners.append(listener)
            current = self._score
        self._deliver(listener, current)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._score_listeners:
                    self._score_listeners.remove(listener)

        return unsubscribe

    # -- control ------------------------------------------------------------

    def configure(
        self,
        *,
        modality: Modality,
        n: int,
        total_events: int,
        symbol_count: int,
        match_count: int,
        event_interval_ms: int,
    ) -> None:
        """Set parameters for the next start(); a running round is unaffected."""

        cfg = replace(
            self._config,
            modality=Modality(modality),
            n=int(n),
            total_events=int(total_events),
            symbol_count=int(symbol_count),
            match_count=int(match_count),
            event_interval_ms=int(event_interval_ms),
        )
        cfg.validate()
        with self._lock:
            self._config = cfg
            if not self._state.is_running:
                self._publish(
                    replace(
                        self._state,
                        modality=cfg.modality,
                        n=cfg.n,
                        total_events=cfg.total_events,
                    )
                )
        self._flush()

    def set_modality(self, modality: Modality) -> None:
        with self._lock:
            cfg = replace(self._config, modality=Modality(modality))
            cfg.validate()
            self._config = cfg
            if not self._state.is_running:
                self._publish(replace(self._state, modality=cfg.modality))
        self._flush()

    def start(self, *, sequence: Sequence[int] | None = None) -> None:
        """Begin a new round, cancelling any round in progress.

        ``sequence`` replaces the generated one (scripted rounds); its values
        are normalized into the symbol range and it sets the round length.
        """

        with self._lock:
            cfg = self._config
            if sequence is None:
                seq = self._generator.generate(
                    total_events=cfg.total_events,
                    symbol_count=cfg.symbol_count,
                    match_count=cfg.resolved_match_count(),
                    n=cfg.n,
                )
            else:
                seq = normalize_sequence(sequence, cfg.symbol_count)
                if len(seq) <= cfg.n:
                    raise ConfigError(f"sequence must be longer than n={cfg.n}")

            if self._state.is_running:
                logger.info("Round %d cancelled by restart", self._round_id)
            self._cancel_timers()

            self._round_id += 1
            self._round_config = cfg
            self._sequence = seq
            self._events = []
            self._index = -1

            self._publish(
                RoundState(
                    modality=cfg.modality,
                    n=cfg.n,
                    current_index=-1,
                    current_value=-1,
                    total_events=len(seq),
                    correct_count=0,
                    accepting_response=False,
                    last_feedback=Feedback.NONE,
                    is_running=True,
                    phase=RoundPhase.PRESENTING,
                    round_id=self._round_id,
                )
            )
            self._publish(ScoreState(score=0, high_score=self._high_score))

            now = self._clock.now()
            if cfg.modality is Modality.AUDITORY and self._speech is not None and not self._speech_ready():
                self._publish(replace(self._state, phase=RoundPhase.WAITING_FOR_SPEECH))
                self._speech_polls = 0
                self._schedule(_Step.POLL_SPEECH, now + cfg.speech_poll_interval_ms / 1000.0)
            else:
                # First event opens on the next update(), like a freshly launched task.
                self._schedule(_Step.OPEN, now)

            logger.info(
                "Round %d started: %s, n=%d, %d events, %d matches",
                self._round_id,
                cfg.modality.value,
                cfg.n,
                len(seq),
                sum(1 for i in range(cfg.n, len(seq)) if seq[i] == seq[i - cfg.n]),
            )
        self._flush()

    def stop(self) -> None:
        with self._lock:
            if not self._state.is_running:
                return
            self._cancel_timers()
            self._publish(
                replace(
                    self._state,
                    accepting_response=False,
                    is_running=False,
                    phase=RoundPhase.IDLE,
                )
            )
            logger.info("Round %d stopped at event %d", self._round_id, self._index)
        self._flush()

    def respond(self) -> ResponseOutcome:
        """The user's "match" action. First response per event wins."""

        with self._lock:
            s = self._state
            n = self._round_config.n
            if not s.accepting_response or s.current_index < n:
                return ResponseOutcome.IGNORED

            i = s.current_index
            hit = self._sequence[i] == self._sequence[i - n]
            outcome = ResponseOutcome.HIT if hit else ResponseOutcome.MISS
            correct = s.correct_count + (1 if hit else 0)

            self._response = outcome
            self._responded_at_s = self._clock.now()
            self._publish(
                replace(
                    s,
                    correct_count=correct,
                    accepting_response=False,
                    last_feedback=Feedback.HIT if hit else Feedback.MISS,
                )
            )
            self._publish(ScoreState(score=correct, high_score=self._high_score))
            logger.debug("Event %d response: %s", i, outcome.value)
        self._flush()
        return outcome

    def update(self) -> None:
        with self._lock:
            now = self._clock.now()
            while self._deadline_s is not None and now >= self._deadline_s:
                due = self._deadline_s
                step = self._step
                if step is _Step.POLL_SPEECH:
                    self._poll_speech(due)
                elif step is _Step.OPEN:
                    self._open_event(self._index + 1, due)
                elif step is _Step.CLOSE:
                    self._close_event(due)
                else:
                    self._cancel_timers()
        self._flush()

    # -- presentation loop --------------------------------------------------

    def _schedule(self, step: _Step, at_s: float) -> None:
        self._step = step
        self._deadline_s = at_s

    def _cancel_timers(self) -> None:
        self._step = None
        self._deadline_s = None
        self._speech_polls = 0

    def _poll_speech(self, due: float) -> None:
        cfg = self._round_config
        self._speech_polls += 1
        if self._speech_ready() or self._speech_polls >= cfg.speech_ready_polls:
            if not self._speech_ready():
                logger.warning("Speech not ready after %d polls; starting round anyway", self._speech_polls)
            self._publish(replace(self._state, phase=RoundPhase.PRESENTING))
            self._schedule(_Step.OPEN, due)
            return
        self._schedule(_Step.POLL_SPEECH, due + cfg.speech_poll_interval_ms / 1000.0)

    def _open_event(self, index: int, due: float) -> None:
        cfg = self._round_config
        self._index = index
        self._opened_at_s = due
        self._response = ResponseOutcome.IGNORED
        self._responded_at_s = None
        self._schedule(_Step.CLOSE, due + cfg.event_interval_ms / 1000.0)

        try:
            value = self._sequence[index]
            self._publish(
                replace(
                    self._state,
                    current_index=index,
                    current_value=value,
                    accepting_response=True,
                    last_feedback=Feedback.NONE,
                )
            )
            logger.debug("Event %d/%d: %d", index + 1, len(self._sequence), value)
            if cfg.modality is Modality.AUDITORY:
                self._speak(value, index)
        except Exception:
            logger.exception("Event %d failed; continuing with the next one", index)

    def _close_event(self, due: float) -> None:
        index = self._index
        if index + 1 < len(self._sequence):
            self._schedule(_Step.OPEN, due)
        else:
            self._cancel_timers()

        try:
            n = self._round_config.n
            is_match = index >= n and self._sequence[index] == self._sequence[index - n]
            rt = None
            if self._responded_at_s is not None:
                rt = max(0.0, self._responded_at_s - self._opened_at_s)
            self._events.append(
                ResponseEvent(
                    index=index,
                    value=self._sequence[index],
                    is_match=is_match,
                    responded=self._response is not ResponseOutcome.IGNORED,
                    outcome=self._response,
                    presented_at_s=self._opened_at_s,
                    response_time_s=rt,
                )
            )
            self._publish(replace(self._state, accepting_response=False))
        except Exception:
            logger.exception("Closing event %d failed", index)

        if self._deadline_s is None:
            self._finish()

    def _finish(self) -> None:
        correct = self._state.correct_count
        self._publish(
            replace(
                self._state,
                accepting_response=False,
                is_running=False,
                phase=RoundPhase.FINISHED,
            )
        )
        logger.info("Round %d finished: %d correct", self._round_id, correct)

        if correct > self._high_score:
            self._high_score = correct
            if self._high_scores is not None:
                try:
                    self._high_scores.set_high_score(correct)
                except Exception as exc:
                    logger.warning("Could not persist high score %d: %s", correct, exc)
            self._publish(ScoreState(score=correct, high_score=self._high_score))

    def _speak(self, value: int, index: int) -> None:
        if self._speech is None:
            return
        request_id = f"nback_audio_{self._round_id}_{index}"
        try:
            self._speech.speak(symbol_label(value), request_id)
        except CollaboratorFailure as exc:
            logger.warning("Speech request %s failed: %s", request_id, exc)
        except Exception:
            logger.warning("Speech request %s failed", request_id, exc_info=True)

    def _speech_ready(self) -> bool:
        if self._speech is None:
            return False
        try:
            return bool(self._speech.ready)
        except Exception:
            logger.warning("Speech readiness check failed", exc_info=True)
            return False

    def _load_high_score(self) -> int:
        if self._high_scores is None:
            return 0
        try:
            return max(0, int(self._high_scores.get_high_score()))
        except Exception as exc:
            logger.warning("Could not load high score: %s", exc)
            return 0

    # -- change notification ------------------------------------------------

    def _publish(self, item: RoundState | ScoreState) -> None:
        if isinstance(item, RoundState):
            if item == self._state:
                return
            self._state = item
        else:
            if item == self._score:
                return
            self._score = item
        self._outbox.append(item)

    def _flush(self) -> None:
        me = threading.get_ident()
        if self._flushing_thread == me:
            # Called from a listener: the outer loop drains what it published.
            return
        with self._notify_lock:
            self._flushing_thread = me
            try:
                while True:
                    with self._lock:
                        if not self._outbox:
                            return
                        item = self._outbox.pop(0)
                        if isinstance(item, RoundState):
                            targets: list[Callable] = list(self._listeners)
                        else:
                            targets = list(self._score_listeners)
                    for listener in targets:
                        self._deliver(listener, item)
            finally:
                self._flushing_thread = None

    @staticmethod
    def _deliver(listener: Callable, item: object) -> None:
        try:
            listener(item)
        except Exception:
            logger.exception("State listener %r failed", listener)


def build_trial_engine(
    *,
    clock: Clock,
    seed: int | None = None,
    speech: SpeechCollaborator | None = None,
    high_scores: HighScoreRepository | None = None,
    config: RoundConfig | None = None,
) -> TrialEngine:
    return TrialEngine(
        clock=clock,
        seed=seed,
        speech=speech,
        high_scores=high_scores,
        config=config,
    )
