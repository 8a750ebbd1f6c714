from __future__ import annotations

from pathlib import Path

import pytest

from nback_trainer.__main__ import build_parser, main
from nback_trainer.persistence import HIGH_SCORE_STORE_ENV, HighScoreStore


def test_parser_defaults_match_round_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.modality == "spatial"
    assert args.n == 2
    assert args.events == 10
    assert args.matches is None
    assert args.interval_ms == 2000
    assert args.headless is False


def test_invalid_settings_exit_with_status_2(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(HIGH_SCORE_STORE_ENV, str(tmp_path / "hs.json"))
    assert main(["--headless", "--n", "3", "--events", "3"]) == 2
    assert main(["--headless", "--events", "6", "--matches", "9"]) == 2


def test_headless_autoplay_round_prints_summary_and_saves_score(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = tmp_path / "hs.json"
    monkeypatch.setenv(HIGH_SCORE_STORE_ENV, str(path))

    code = main(
        ["--headless", "--autoplay", "--n", "1", "--events", "5", "--matches", "2", "--interval-ms", "60"]
    )

    assert code == 0
    out = capsys.readouterr().out
    assert "Correct: 2 of 2 matches" in out
    assert "High score: 2" in out
    assert HighScoreStore(path).get_high_score() == 2
