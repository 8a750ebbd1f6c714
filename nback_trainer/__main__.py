from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Ensure the repository root (parent of this package) is on ``sys.path``.

    If this module is executed as a script (``python nback_trainer/__main__.py``),
    the package may not be discoverable by Python.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


if __package__ in (None, ""):
    _ensure_repo_root_on_path()

from nback_trainer.clock import RealClock  # noqa: E402
from nback_trainer.cognitive_core import ConfigError, Modality, RoundState  # noqa: E402
from nback_trainer.logging_config import configure_logging  # noqa: E402
from nback_trainer.persistence import HighScoreStore  # noqa: E402
from nback_trainer.results import format_round_result, round_result_from_engine  # noqa: E402
from nback_trainer.runner import run_headless_round  # noqa: E402
from nback_trainer.speech import OfflineTtsSpeaker  # noqa: E402
from nback_trainer.trial_engine import RoundConfig, build_trial_engine  # noqa: E402

logger = logging.getLogger("nback_trainer.main")


def build_parser() -> argparse.ArgumentParser:
    defaults = RoundConfig()
    parser = argparse.ArgumentParser(prog="nback_trainer", description="N-back working memory trainer")
    parser.add_argument("--headless", action="store_true", help="Run one round in the terminal instead of the window")
    parser.add_argument(
        "--modality",
        choices=[m.value for m in Modality],
        default=defaults.modality.value,
        help="Stimulus channel",
    )
    parser.add_argument("--n", type=int, default=defaults.n, help="How many events back a match refers to")
    parser.add_argument("--events", type=int, default=defaults.total_events, help="Events per round")
    parser.add_argument("--matches", type=int, default=None, help="Exact number of matches (default: 30%% of eligible events)")
    parser.add_argument("--interval-ms", type=int, default=defaults.event_interval_ms, help="Time each event stays up")
    parser.add_argument("--autoplay", action="store_true", help="Headless only: respond to every true match")
    parser.add_argument("--log-level", default=None, help="Logging level (default: NBACK_LOG_LEVEL or INFO)")
    return parser


def _print_event(state: RoundState) -> None:
    if state.accepting_response:
        print(f"[{state.current_index + 1:>3}/{state.total_events}] {state.current_value}", flush=True)


def _run_headless(cfg: RoundConfig, *, autoplay: bool) -> int:
    store = HighScoreStore(HighScoreStore.default_path())
    speech = OfflineTtsSpeaker() if cfg.modality is Modality.AUDITORY else None
    engine = build_trial_engine(clock=RealClock(), speech=speech, high_scores=store, config=cfg)
    try:
        asyncio.run(run_headless_round(engine, autoplay=autoplay, on_state=_print_event))
    finally:
        if speech is not None:
            speech.stop()
    print(format_round_result(round_result_from_engine(engine), high_score=engine.high_score))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for running the trainer from the command line."""

    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = RoundConfig(
            modality=Modality(args.modality),
            n=args.n,
            total_events=args.events,
            match_count=args.matches,
            event_interval_ms=args.interval_ms,
        )
        cfg.validate()
    except ConfigError as exc:
        logger.error("Invalid round settings: %s", exc)
        return 2

    if args.headless:
        return _run_headless(cfg, autoplay=args.autoplay)

    from nback_trainer.app import run

    return run(config=cfg)


if __name__ == "__main__":
    raise SystemExit(main())
