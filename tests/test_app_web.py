from __future__ import annotations

from argparse import Namespace

import pytest
from fastapi.testclient import TestClient

from habla.app.config import load_default_config
from habla.app.services import HablaServices
from habla.app.web import create_app, failure_status
from habla.asr.base import Transcriber, Transcript
from habla.asr.client import TranscriptionClient
from habla.audio.source import AudioSource
from habla.contracts import AudioBuffer, Direction
from habla.errors import BusyError
from habla.nlp.translator.engine import TranslationEngine
from habla.nlp.translator.phrasebook import PhrasebookTranslator
from habla.pipeline.orchestrator import PipelineOrchestrator
from habla.telemetry.sampler import TelemetrySampler


class _FixedTranscriber(Transcriber):
    def __init__(self, text: str) -> None:
        self.text = text

    @property
    def name(self) -> str:
        return "fixed"

    def transcribe(self, buffer: AudioBuffer, direction: Direction) -> Transcript:
        return Transcript(text=self.text)


def _args(**overrides) -> Namespace:
    values = load_default_config()
    values.update({"translator": "phrasebook", "backend": "local"})
    values.update(overrides)
    return Namespace(**values)


def _services(*, telemetry: bool = True, heard: str = "buenos días", engine: TranslationEngine | None = None):
    audio_source = AudioSource()
    transcription = TranscriptionClient(factory=lambda backend: _FixedTranscriber(heard))
    engine = engine or TranslationEngine(PhrasebookTranslator())
    sampler = TelemetrySampler(capacity=5, probe=lambda: (25.0, 4096)) if telemetry else None
    return HablaServices(
        audio_source=audio_source,
        transcription=transcription,
        engine=engine,
        orchestrator=PipelineOrchestrator(audio_source=audio_source, transcription=transcription, engine=engine),
        sampler=sampler,
    )


def test_health() -> None:
    client = TestClient(create_app(_services(), _args()))
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "translator": "phrasebook"}


def test_stats_and_reset_peaks() -> None:
    services = _services()
    services.sampler.sample()
    client = TestClient(create_app(services, _args()))

    body = client.get("/stats").json()
    assert body["capacity"] == 5
    assert body["peakCpuPercent"] == 25.0
    assert body["peakMemoryBytes"] == 4096
    assert body["samples"][0]["cpuPercent"] == 25.0
    assert body["memoryTotalBytes"] > 0

    resp = client.post("/stats/reset-peaks")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_stats_disabled_is_404() -> None:
    client = TestClient(create_app(_services(telemetry=False), _args(telemetry=False)))
    assert client.get("/stats").status_code == 404
    assert client.post("/stats/reset-peaks").status_code == 404


def test_translate() -> None:
    client = TestClient(create_app(_services(), _args()))
    resp = client.post("/translate", json={"direction": "en→es", "text": "good morning"})
    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "direction": "en-es",
        "original": "good morning",
        "translated": "Buenos días",
        "truncated": False,
    }


def test_translate_invalid_direction_is_400() -> None:
    client = TestClient(create_app(_services(), _args()))
    resp = client.post("/translate", json={"direction": "de-en", "text": "hallo"})
    assert resp.status_code == 400
    assert resp.json()["errorKind"] == "ConfigurationError"


def test_translate_busy_is_503() -> None:
    class _BusyEngine(TranslationEngine):
        def translate(self, text, direction):
            raise BusyError("translation engine is busy")

    services = _services(engine=_BusyEngine(PhrasebookTranslator()))
    client = TestClient(create_app(services, _args()))
    resp = client.post("/translate", json={"direction": "es-en", "text": "hola"})
    assert resp.status_code == 503


def test_run_with_wav(wav_factory) -> None:
    client = TestClient(create_app(_services(), _args()))
    resp = client.post("/run", json={"direction": "es-en", "wav": str(wav_factory(seconds=0.5))})
    assert resp.status_code == 200
    body = resp.json()
    assert body["sourceText"] == "buenos días"
    assert body["translatedText"] == "Good morning"
    assert set(body["stageTimings"]) == {"acquire", "transcribe", "translate", "total"}


def test_run_missing_file_is_422(tmp_path) -> None:
    client = TestClient(create_app(_services(), _args()))
    resp = client.post("/run", json={"direction": "es-en", "wav": str(tmp_path / "gone.wav")})
    assert resp.status_code == 422
    body = resp.json()
    assert body["stage"] == "acquire"
    assert body["errorKind"] == "NotFoundError"
    assert "WAV path" in body["hint"]


def test_run_without_input_or_bad_direction_is_422(wav_factory) -> None:
    client = TestClient(create_app(_services(), _args()))
    assert client.post("/run", json={"direction": "es-en"}).status_code == 422
    resp = client.post("/run", json={"direction": "xx", "wav": str(wav_factory(seconds=0.5))})
    assert resp.status_code == 422
    assert resp.json()["stage"] == "configure"


def test_run_no_speech_is_502(wav_factory) -> None:
    client = TestClient(create_app(_services(heard=""), _args()))
    resp = client.post("/run", json={"wav": str(wav_factory(seconds=0.5))})
    assert resp.status_code == 502
    assert resp.json()["errorKind"] == "NoSpeechError"


@pytest.mark.parametrize(
    "kind, status",
    [("FormatError", 422), ("BackendError", 502), ("BusyError", 503), ("LoadError", 500), ("EngineError", 500)],
)
def test_failure_status(kind: str, status: int) -> None:
    assert failure_status(kind) == status


def test_run_documents_server_side_wav_path() -> None:
    schema = create_app(_services(), _args()).openapi()
    description = schema["paths"]["/run"]["post"]["description"]
    assert "server's own filesystem" in description
    assert "127.0.0.1" in description
    assert "server filesystem" in schema["components"]["schemas"]["RunBody"]["properties"]["wav"]["description"]
