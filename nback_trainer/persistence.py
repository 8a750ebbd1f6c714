from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol

from .cognitive_core import CollaboratorFailure

logger = logging.getLogger(__name__)

HIGH_SCORE_STORE_ENV = "NBACK_HIGH_SCORE_PATH"


class HighScoreRepository(Protocol):
    def get_high_score(self) -> int: ...
    def set_high_score(self, value: int) -> None: ...


class HighScoreStore:
    """Single scalar high score kept in a small JSON file.

    A missing file reads as 0. Unreadable or corrupt files raise
    CollaboratorFailure; callers decide whether that matters.
    """

    _version = 1

    def __init__(self, path: Path) -> None:
        self._path = path

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(HIGH_SCORE_STORE_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".nback_trainer_high_score.json"

    @property
    def path(self) -> Path:
        return self._path

    def get_high_score(self) -> int:
        if not self._path.exists():
            return 0
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CollaboratorFailure(f"cannot read high score from {self._path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise CollaboratorFailure(f"unexpected high score payload in {self._path}")

        raw = payload.get("high_score", 0)
        try:
            value = int(raw)
        except (TypeError, ValueError) as exc:
            raise CollaboratorFailure(f"high score is not an integer: {raw!r}") from exc
        return max(0, value)

    def set_high_score(self, value: int) -> None:
        payload = {
            "version": self._version,
            "high_score": max(0, int(value)),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            raise CollaboratorFailure(f"cannot write high score to {self._path}: {exc}") from exc
        logger.info("High score saved: %d", payload["high_score"])


class InMemoryHighScores:
    """Non-persistent repository for headless runs."""

    def __init__(self, value: int = 0) -> None:
        self._value = int(value)
        self.writes: list[int] = []

    def get_high_score(self) -> int:
        return self._value

    def set_high_score(self, value: int) -> None:
        self._value = int(value)
        self.writes.append(int(value))
