from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from nback_trainer import speech
from nback_trainer.cognitive_core import CollaboratorFailure
from nback_trainer.speech import NullSpeaker, OfflineTtsSpeaker


@dataclass
class FakeProc:
    text: str
    finished: bool = False
    terminated: bool = False
    killed: bool = False
    waited: bool = False

    def poll(self) -> int | None:
        return 0 if self.finished else None

    def terminate(self) -> None:
        self.terminated = True

    def kill(self) -> None:
        self.killed = True
        self.finished = True

    def wait(self, timeout: float | None = None) -> int:
        self.waited = True
        self.finished = True
        return 0


@dataclass
class Launcher:
    procs: list[FakeProc] = field(default_factory=list)
    fail: bool = False

    def __call__(self, text: str) -> FakeProc | None:
        if self.fail:
            return None
        proc = FakeProc(text)
        self.procs.append(proc)
        return proc


@pytest.fixture
def speaker(monkeypatch: pytest.MonkeyPatch) -> tuple[OfflineTtsSpeaker, Launcher]:
    monkeypatch.delenv("NBACK_DISABLE_TTS", raising=False)
    monkeypatch.setenv("SDL_AUDIODRIVER", "pulse")
    monkeypatch.setattr(speech, "available_backends", lambda: ["espeak"])
    launcher = Launcher()
    tts = OfflineTtsSpeaker()
    monkeypatch.setattr(tts, "_launch_process", launcher)
    return tts, launcher


def test_disabled_speaker_is_not_ready_and_refuses_to_speak(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NBACK_DISABLE_TTS", "1")
    tts = OfflineTtsSpeaker()
    assert tts.ready is False
    with pytest.raises(CollaboratorFailure):
        tts.speak("A", "nback_audio_1_0")


def test_new_letter_cuts_off_the_one_still_playing_without_waiting(speaker) -> None:
    tts, launcher = speaker
    assert tts.ready is True

    tts.speak("A", "nback_audio_1_0")
    assert tts.active_request == "nback_audio_1_0"

    tts.speak("B", "nback_audio_1_1")
    first, second = launcher.procs
    assert (first.text, second.text) == ("A", "B")
    assert first.terminated is True
    assert first.waited is False
    assert tts.pending_cutoffs == 1
    assert tts.active_request == "nback_audio_1_1"

    first.finished = True
    tts.update()
    assert tts.pending_cutoffs == 0


def test_cut_off_process_is_killed_after_grace_period(speaker, monkeypatch: pytest.MonkeyPatch) -> None:
    tts, launcher = speaker
    now = [100.0]
    monkeypatch.setattr(speech.time, "monotonic", lambda: now[0])

    tts.speak("A", "r0")
    tts.speak("B", "r1")
    stubborn = launcher.procs[0]

    now[0] += tts.kill_grace_s / 2
    tts.update()
    assert stubborn.killed is False

    now[0] += tts.kill_grace_s
    tts.update()
    assert stubborn.killed is True
    assert stubborn.waited is False

    tts.update()
    assert tts.pending_cutoffs == 0


def test_finished_process_is_released_on_update(speaker) -> None:
    tts, launcher = speaker
    tts.speak("C", "r0")
    launcher.procs[0].finished = True
    tts.update()
    assert tts.active_request is None


def test_failed_launch_drops_backend_and_disables(speaker) -> None:
    tts, launcher = speaker
    launcher.fail = True
    tts.speak("D", "r0")
    assert tts.ready is False
    assert tts.backend is None


def test_stop_terminates_and_reaps_active_utterance(speaker) -> None:
    tts, launcher = speaker
    tts.speak("E", "r0")
    tts.stop()
    assert launcher.procs[0].terminated is True
    assert launcher.procs[0].waited is True
    assert tts.active_request is None
    assert tts.pending_cutoffs == 0


def test_forced_backend_must_be_installed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NBACK_TTS_BACKEND", "espeak")
    monkeypatch.setitem(speech.BACKENDS, "espeak", lambda text: None)
    assert speech.available_backends() == []

    monkeypatch.setitem(speech.BACKENDS, "espeak", lambda text: ["espeak", text])
    assert speech.available_backends() == ["espeak"]


def test_null_speaker_records_requests() -> None:
    null = NullSpeaker()
    null.speak("A", "nback_audio_1_0")
    assert null.ready is True
    assert null.spoken == [("A", "nback_audio_1_0")]
