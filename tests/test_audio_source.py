from __future__ import annotations

import sys
import threading
import types
from pathlib import Path

import numpy as np
import pytest

from habla.asr.base import Transcriber, Transcript
from habla.asr.client import TranscriptionClient
from habla.audio import wav as wav_module
from habla.audio.source import AudioSource
from habla.audio.wav import read_pcm16_wav
from habla.contracts import CaptureInput, Direction, FileInput, LocalBackend, PipelineFailure, RunRequest
from habla.errors import DeviceError, FormatError, InvalidDurationError, NotFoundError
from habla.nlp.translator.engine import TranslationEngine
from habla.nlp.translator.phrasebook import PhrasebookTranslator
from habla.pipeline.orchestrator import PipelineOrchestrator


@pytest.mark.parametrize("seconds", [1.0, 2.5])
def test_file_length_matches_duration(wav_factory, seconds: float) -> None:
    path = wav_factory(seconds=seconds)
    buf = AudioSource().from_file(str(path))
    assert len(buf) == int(seconds * 16000)
    assert buf.sample_rate == 16000


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        read_pcm16_wav(tmp_path / "nope.wav")


def test_stereo_rejected(wav_factory) -> None:
    with pytest.raises(FormatError, match="mono"):
        read_pcm16_wav(wav_factory(seconds=0.5, channels=2))


def test_wrong_rate_rejected(wav_factory) -> None:
    with pytest.raises(FormatError, match="16000 Hz"):
        read_pcm16_wav(wav_factory(seconds=0.5, rate=44100))


def test_wrong_width_rejected(wav_factory) -> None:
    with pytest.raises(FormatError, match="16-bit"):
        read_pcm16_wav(wav_factory(seconds=0.5, width=1))


def test_empty_file_rejected(wav_factory) -> None:
    with pytest.raises(FormatError):
        read_pcm16_wav(wav_factory(seconds=0))


def test_not_a_wav(tmp_path: Path) -> None:
    path = tmp_path / "noise.wav"
    path.write_bytes(b"definitely not RIFF")
    with pytest.raises(FormatError):
        read_pcm16_wav(path)


@pytest.mark.parametrize("seconds", [-5, 0, float("nan"), float("inf"), "abc", 301])
def test_invalid_capture_duration_never_opens_device(monkeypatch, seconds) -> None:
    src = AudioSource()

    def _boom():
        raise AssertionError("device must not be opened")

    monkeypatch.setattr(src, "_open_stream", _boom)
    with pytest.raises(InvalidDurationError):
        src.from_capture(seconds)


class _FakeStream:
    def __init__(self, started: threading.Event | None = None, release: threading.Event | None = None) -> None:
        self.started = started
        self.release = release

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def read(self, frames: int):
        if self.started is not None:
            self.started.set()
            assert self.release is not None
            self.release.wait(5)
        return np.ones(frames, dtype=np.int16).tobytes(), False


def _fake_sounddevice(monkeypatch, stream: _FakeStream) -> None:
    fake = types.SimpleNamespace(
        RawInputStream=lambda **kwargs: stream,
        query_devices=lambda *args, **kwargs: "0 Fake Mic",
    )
    monkeypatch.setitem(sys.modules, "sounddevice", fake)


def test_capture_length_matches_duration(monkeypatch) -> None:
    _fake_sounddevice(monkeypatch, _FakeStream())
    buf = AudioSource(device=0).from_capture(0.5)
    assert len(buf) == 8000


def test_second_capture_while_busy_is_device_error(monkeypatch) -> None:
    started, release = threading.Event(), threading.Event()
    _fake_sounddevice(monkeypatch, _FakeStream(started, release))
    src = AudioSource(device=0)
    results: list[object] = []

    worker = threading.Thread(target=lambda: results.append(src.from_capture(0.2)))
    worker.start()
    assert started.wait(5)
    try:
        with pytest.raises(DeviceError):
            src.from_capture(0.2)
    finally:
        release.set()
        worker.join(5)
    assert len(results) == 1


def test_stream_open_failure_is_device_error(monkeypatch) -> None:
    def _raise(**kwargs):
        raise RuntimeError("PortAudio error")

    fake = types.SimpleNamespace(RawInputStream=_raise, query_devices=lambda *a, **k: None)
    monkeypatch.setitem(sys.modules, "sounddevice", fake)
    with pytest.raises(DeviceError):
        AudioSource(device=3).from_capture(1)


def test_list_devices(monkeypatch) -> None:
    _fake_sounddevice(monkeypatch, _FakeStream())
    assert "Fake Mic" in AudioSource.list_devices()


class _SilentTranscriber(Transcriber):
    @property
    def name(self) -> str:
        return "silent"

    def transcribe(self, buffer, direction) -> Transcript:
        raise AssertionError("transcription must not run")


def _orchestrator(src: AudioSource) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        audio_source=src,
        transcription=TranscriptionClient(factory=lambda backend: _SilentTranscriber()),
        engine=TranslationEngine(PhrasebookTranslator()),
    )


class _FailingStartStream(_FakeStream):
    def __enter__(self):
        raise RuntimeError("PortAudio: Error starting stream")


def test_stream_start_failure_is_device_error(monkeypatch) -> None:
    _fake_sounddevice(monkeypatch, _FailingStartStream())
    src = AudioSource(device=0)
    with pytest.raises(DeviceError):
        src.from_capture(1.0)

    outcome = _orchestrator(src).run(
        RunRequest(input=CaptureInput(seconds=1.0), direction=Direction.ES_EN, backend=LocalBackend())
    )
    assert isinstance(outcome, PipelineFailure)
    assert outcome.stage == "acquire"
    assert outcome.error_kind == "DeviceError"


def test_capture_gate_released_after_start_failure(monkeypatch) -> None:
    _fake_sounddevice(monkeypatch, _FailingStartStream())
    src = AudioSource(device=0)
    with pytest.raises(DeviceError):
        src.from_capture(0.5)
    _fake_sounddevice(monkeypatch, _FakeStream())
    assert len(src.from_capture(0.5)) == 8000


class _FakeWaveReader:
    def __init__(self, pcm16: bytes) -> None:
        self.pcm16 = pcm16

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def getnchannels(self) -> int:
        return 1

    def getsampwidth(self) -> int:
        return 2

    def getframerate(self) -> int:
        return 16000

    def getnframes(self) -> int:
        return len(self.pcm16) // 2

    def readframes(self, n: int) -> bytes:
        return self.pcm16


def test_odd_sample_bytes_are_format_error(wav_factory, monkeypatch) -> None:
    path = wav_factory(seconds=0.1)
    monkeypatch.setattr(wav_module.wave, "open", lambda *a, **k: _FakeWaveReader(b"\x00\x01\x02"))
    with pytest.raises(FormatError, match="truncated"):
        read_pcm16_wav(path)


def test_unreadable_file_is_format_error(wav_factory, monkeypatch) -> None:
    path = wav_factory(seconds=0.1)

    def _denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(wav_module.wave, "open", _denied)
    with pytest.raises(FormatError, match="cannot be read"):
        read_pcm16_wav(path)

    outcome = _orchestrator(AudioSource()).run(
        RunRequest(input=FileInput(path=str(path)), direction=Direction.ES_EN, backend=LocalBackend())
    )
    assert isinstance(outcome, PipelineFailure)
    assert outcome.stage == "acquire"
    assert outcome.error_kind == "FormatError"


def test_file_vanishing_before_open_is_not_found(wav_factory, monkeypatch) -> None:
    path = wav_factory(seconds=0.1)

    def _gone(*args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(wav_module.wave, "open", _gone)
    with pytest.raises(NotFoundError):
        read_pcm16_wav(path)
