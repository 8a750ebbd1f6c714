from __future__ import annotations

import importlib.util
import logging
import os
import shutil
import subprocess
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .cognitive_core import CollaboratorFailure

logger = logging.getLogger(__name__)

SPEECH_RATE_WPM = 150


class SpeechCollaborator(Protocol):
    @property
    def ready(self) -> bool: ...
    def speak(self, symbol: str, request_id: str) -> None: ...


class NullSpeaker:
    """Silent speaker; always ready so auditory rounds never wait on it."""

    def __init__(self) -> None:
        self.spoken: list[tuple[str, str]] = []

    @property
    def ready(self) -> bool:
        return True

    def speak(self, symbol: str, request_id: str) -> None:
        self.spoken.append((symbol, request_id))


# -- backends ---------------------------------------------------------------
#
# Each backend turns a letter into the argv of a short-lived child process.

_PYTTSX3_SCRIPT = (
    "import sys, pyttsx3\n"
    "e = pyttsx3.init()\n"
    f"e.setProperty('rate', {SPEECH_RATE_WPM})\n"
    "e.say(' '.join(sys.argv[1:]))\n"
    "e.runAndWait()\n"
)

_POWERSHELL_SCRIPT = (
    "Add-Type -AssemblyName System.Speech; "
    "(New-Object System.Speech.Synthesis.SpeechSynthesizer).Speak(($args -join ' '))"
)


def _say_argv(text: str) -> list[str] | None:
    exe = shutil.which("say")
    return None if exe is None else [exe, "-r", str(SPEECH_RATE_WPM), text]


def _powershell_argv(text: str) -> list[str] | None:
    exe = shutil.which("powershell") or shutil.which("pwsh")
    return None if exe is None else [exe, "-NoProfile", "-NonInteractive", "-Command", _POWERSHELL_SCRIPT, text]


def _pyttsx3_argv(text: str) -> list[str] | None:
    if importlib.util.find_spec("pyttsx3") is None:
        return None
    return [sys.executable, "-c", _PYTTSX3_SCRIPT, text]


def _espeak_argv(text: str) -> list[str] | None:
    exe = shutil.which("espeak") or shutil.which("espeak-ng")
    return None if exe is None else [exe, "-s", str(SPEECH_RATE_WPM), text]


BACKENDS: dict[str, Callable[[str], list[str] | None]] = {
    "say": _say_argv,
    "powershell": _powershell_argv,
    "pyttsx3": _pyttsx3_argv,
    "espeak": _espeak_argv,
}


def available_backends() -> list[str]:
    """Installed backends, preferred first. ``NBACK_TTS_BACKEND`` pins one."""

    forced = os.environ.get("NBACK_TTS_BACKEND", "").strip().lower()
    if forced in BACKENDS:
        return [forced] if BACKENDS[forced]("A") is not None else []

    order = ["pyttsx3", "espeak"]
    if os.name == "nt":
        order.insert(0, "powershell")
    if sys.platform == "darwin":
        order.insert(0, "say")
    return [name for name in order if BACKENDS[name]("A") is not None]


@dataclass(slots=True)
class _Utterance:
    proc: subprocess.Popen[bytes]
    request_id: str
    started_s: float


class OfflineTtsSpeaker:
    """Best-effort letter announcer backed by one child process per letter.

    Only the newest letter matters: a queued letter is replaced and one still
    playing is cut off. Nothing here waits on a child process except
    ``stop()``; cut-off processes are signalled and reaped later by
    ``update()``, which the host loop calls every frame.
    """

    max_utterance_s = 4.0
    kill_grace_s = 0.5

    def __init__(self) -> None:
        self._backends: list[str] = []
        self._pending: tuple[str, str] | None = None
        self._current: _Utterance | None = None
        self._cut_off: list[tuple[subprocess.Popen[bytes], float]] = []

        if os.environ.get("NBACK_DISABLE_TTS", "0") == "1":
            logger.info("TTS disabled by NBACK_DISABLE_TTS")
            return
        if os.environ.get("SDL_AUDIODRIVER", "").strip().lower() == "dummy":
            return

        self._backends = available_backends()
        if self._backends:
            logger.info("TTS backend: %s", self._backends[0])
        else:
            logger.warning("No offline TTS backend found; auditory rounds will be silent")

    @property
    def ready(self) -> bool:
        return bool(self._backends)

    @property
    def backend(self) -> str | None:
        return self._backends[0] if self._backends else None

    @property
    def active_request(self) -> str | None:
        return None if self._current is None else self._current.request_id

    @property
    def pending_cutoffs(self) -> int:
        return len(self._cut_off)

    def speak(self, symbol: str, request_id: str) -> None:
        if not self._backends:
            raise CollaboratorFailure("no TTS backend available")
        phrase = " ".join(str(symbol).split())
        if not phrase:
            return
        self._pending = (phrase, str(request_id))
        if self._current is not None:
            self._cut(self._current.proc)
            self._current = None
        self.update()

    def update(self) -> None:
        self._reap()

        current = self._current
        if current is not None:
            if current.proc.poll() is not None:
                self._current = None
            elif time.monotonic() - current.started_s > self.max_utterance_s:
                logger.debug("Utterance %s timed out", current.request_id)
                self._cut(current.proc)
                self._current = None

        if self._current is not None:
            return
        while self._pending is not None and self._backends:
            text, request_id = self._pending
            proc = self._launch_process(text)
            if proc is not None:
                self._pending = None
                self._current = _Utterance(proc, request_id, time.monotonic())
                return
            logger.warning("TTS backend %s failed to launch; dropping it", self._backends[0])
            self._backends.pop(0)
        self._pending = None

    def stop(self) -> None:
        """Silence everything and wait briefly for the children to exit."""

        self._pending = None
        if self._current is not None:
            self._cut(self._current.proc)
            self._current = None
        for proc, _ in self._cut_off:
            try:
                proc.wait(timeout=self.kill_grace_s)
            except subprocess.TimeoutExpired:
                proc.kill()
        self._cut_off.clear()

    def _cut(self, proc: subprocess.Popen[bytes]) -> None:
        try:
            proc.terminate()
        except OSError:
            return
        self._cut_off.append((proc, time.monotonic()))

    def _reap(self) -> None:
        now = time.monotonic()
        alive: list[tuple[subprocess.Popen[bytes], float]] = []
        for proc, cut_at in self._cut_off:
            if proc.poll() is not None:
                continue
            if now - cut_at > self.kill_grace_s:
                try:
                    proc.kill()
                except OSError:
                    continue
            alive.append((proc, cut_at))
        self._cut_off = alive

    def _launch_process(self, text: str) -> subprocess.Popen[bytes] | None:
        argv = BACKENDS[self._backends[0]](text)
        if argv is None:
            return None
        try:
            return subprocess.Popen(argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError:
            logger.debug("TTS launch failed: %s", argv[0], exc_info=True)
            return None
