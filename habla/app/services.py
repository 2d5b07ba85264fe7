from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from habla.asr.client import TranscriptionClient
from habla.asr.remote_whisper import RetryPolicy
from habla.audio.source import AudioSource
from habla.contracts import (
    BackendSpec,
    CaptureInput,
    Direction,
    FileInput,
    LocalBackend,
    RemoteBackend,
    RunInput,
    RunRequest,
)
from habla.errors import ConfigurationError
from habla.nlp.translator.engine import TranslationEngine
from habla.nlp.translator.factory import load_engine
from habla.pipeline.orchestrator import PipelineOrchestrator
from habla.telemetry.sampler import TelemetrySampler


@dataclass(frozen=True)
class HablaServices:
    audio_source: AudioSource
    transcription: TranscriptionClient
    engine: TranslationEngine
    orchestrator: PipelineOrchestrator
    sampler: Optional[TelemetrySampler]

    def close(self) -> None:
        self.orchestrator.shutdown(wait=False)
        if self.sampler is not None:
            self.sampler.stop()
        self.transcription.close()
        self.engine.close()


def build_backend(args: Any) -> BackendSpec:
    kind = str(getattr(args, "backend", "remote") or "remote").lower().strip()
    if kind == "remote":
        return RemoteBackend(
            credential=getattr(args, "api_key", None),
            endpoint=str(args.remote_endpoint),
            model=str(args.remote_model),
            timeout_s=float(args.remote_timeout_s),
        )
    if kind == "local":
        return LocalBackend(
            model=str(args.local_model),
            device=str(args.local_device),
            compute_type=str(args.local_compute_type),
        )
    raise ConfigurationError(f"Unknown backend {kind!r}. Use 'remote' or 'local'")


def build_input(args: Any) -> RunInput:
    if getattr(args, "wav", None):
        return FileInput(path=str(args.wav))
    if getattr(args, "realtime", None) is not None:
        return CaptureInput(seconds=float(args.realtime))
    raise ConfigurationError("Either --wav or --realtime must be provided when not using --ui mode.")


def build_request(args: Any, run_input: Optional[RunInput] = None, *, direction: Any = None) -> RunRequest:
    model_path = str(getattr(args, "model_path", "") or "")
    if str(getattr(args, "translator", "llama")) == "llama" and not model_path.strip():
        raise ConfigurationError("A GGUF model path is required (--gemma-model)")
    context_size = int(args.context_size)
    if context_size <= 0:
        raise ConfigurationError("--gemma-ctx must be a positive token count")
    return RunRequest(
        input=run_input if run_input is not None else build_input(args),
        direction=Direction.parse(direction if direction is not None else args.direction),
        backend=build_backend(args),
        model_path=model_path,
        context_size=context_size,
        telemetry_enabled=bool(getattr(args, "telemetry", True)),
    )


def build_services(args: Any, *, engine: Optional[TranslationEngine] = None) -> HablaServices:
    audio_source = AudioSource(device=args.device, max_capture_seconds=float(args.max_capture_sec))
    transcription = TranscriptionClient(
        retry=RetryPolicy(
            max_attempts=max(1, int(args.retry_attempts)),
            backoff_s=max(0.0, float(args.retry_backoff_s)),
        )
    )
    if engine is None:
        engine = load_engine(
            str(args.model_path),
            int(args.context_size),
            provider=str(args.translator),
            max_output_tokens=int(args.max_output_tokens),
            temperature=float(args.temperature),
            queue_depth=max(0, int(args.engine_queue_depth)),
        )
    orchestrator = PipelineOrchestrator(
        audio_source=audio_source,
        transcription=transcription,
        engine=engine,
    )
    sampler = None
    if bool(args.telemetry):
        sampler = TelemetrySampler(
            interval_s=float(args.telemetry_interval_s),
            capacity=max(1, int(args.telemetry_capacity)),
        )
    return HablaServices(
        audio_source=audio_source,
        transcription=transcription,
        engine=engine,
        orchestrator=orchestrator,
        sampler=sampler,
    )
