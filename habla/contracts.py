from __future__ import annotations

import io
import wave
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple, Union

import numpy as np

from habla.errors import ConfigurationError

SAMPLE_RATE = 16000
SAMPLE_WIDTH = 2  # bytes, signed 16-bit PCM
CHANNELS = 1


class Direction(str, Enum):
    ES_EN = "es-en"
    EN_ES = "en-es"

    @property
    def source_lang(self) -> str:
        return self.value.split("-")[0]

    @property
    def target_lang(self) -> str:
        return self.value.split("-")[1]

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, Direction):
            return value
        text = str(value or "").strip().lower().replace("→", "-").replace("->", "-")
        for member in cls:
            if member.value == text:
                return member
        raise ConfigurationError(
            f"Invalid direction {value!r}. Use 'es-en' or 'en-es'",
            stage="configure",
        )


@dataclass(frozen=True, eq=False)
class AudioBuffer:
    """
    Mono 16 kHz signed 16-bit PCM held as a 1-D numpy int16 array.
    Consumed once by the transcription stage and then dropped.
    """
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples, dtype=np.int16).reshape(-1)
        object.__setattr__(self, "samples", samples)

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return len(self) / float(self.sample_rate)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @classmethod
    def from_pcm16(cls, pcm16: bytes, sample_rate: int = SAMPLE_RATE) -> "AudioBuffer":
        return cls(samples=np.frombuffer(pcm16, dtype="<i2").copy(), sample_rate=sample_rate)

    def to_pcm16(self) -> bytes:
        return self.samples.astype("<i2", copy=False).tobytes()

    def to_float32(self) -> np.ndarray:
        return self.samples.astype(np.float32) / 32768.0

    def to_wav_bytes(self) -> bytes:
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(CHANNELS)
            wf.setsampwidth(SAMPLE_WIDTH)
            wf.setframerate(self.sample_rate)
            wf.writeframes(self.to_pcm16())
        return buf.getvalue()


@dataclass(frozen=True)
class FileInput:
    path: str

    def describe(self) -> str:
        return f"file:{self.path}"


@dataclass(frozen=True)
class CaptureInput:
    seconds: float

    def describe(self) -> str:
        return f"capture:{self.seconds:g}s"


RunInput = Union[FileInput, CaptureInput]


@dataclass(frozen=True)
class RemoteBackend:
    credential: Optional[str] = field(default=None, repr=False)
    endpoint: str = "https://api.openai.com/v1/audio/transcriptions"
    model: str = "whisper-1"
    timeout_s: float = 30.0

    @property
    def kind(self) -> str:
        return "remote"


@dataclass(frozen=True)
class LocalBackend:
    model: str = "base"
    device: str = "cpu"
    compute_type: str = "int8"

    @property
    def kind(self) -> str:
        return "local"


BackendSpec = Union[RemoteBackend, LocalBackend]


@dataclass(frozen=True)
class RunRequest:
    input: RunInput
    direction: Direction
    backend: BackendSpec
    model_path: str = "models/gemma-2b-it.Q4_K_M.gguf"
    context_size: int = 2048
    telemetry_enabled: bool = True


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    duration_s: float
    attempts: int = 1
    backend: str = ""


@dataclass(frozen=True)
class TranslationResult:
    source_text: str
    translated_text: str
    duration_s: float = 0.0
    generated_tokens: int = 0
    provider: str = ""
    # source tokens were dropped to fit the context budget
    truncated: bool = False
    # generation stopped at the output token cap
    output_capped: bool = False
    prompt_version: str = ""


@dataclass(frozen=True)
class StageTimings:
    acquire: float = 0.0
    transcribe: float = 0.0
    translate: float = 0.0
    total: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "acquire": round(self.acquire, 6),
            "transcribe": round(self.transcribe, 6),
            "translate": round(self.translate, 6),
            "total": round(self.total, 6),
        }


@dataclass(frozen=True)
class PipelineRun:
    input: RunInput
    direction: Direction
    transcription: TranscriptionResult
    translation: TranslationResult
    timings: StageTimings

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "input": self.input.describe(),
            "direction": self.direction.value,
            "sourceText": self.transcription.text,
            "translatedText": self.translation.translated_text,
            "stageTimings": self.timings.to_dict(),
            "truncated": bool(self.translation.truncated),
            "attempts": int(self.transcription.attempts),
            "generatedTokens": int(self.translation.generated_tokens),
        }


@dataclass(frozen=True)
class PipelineFailure:
    stage: str
    error_kind: str
    message: str
    timings: StageTimings = StageTimings()

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": False,
            "stage": self.stage,
            "errorKind": self.error_kind,
            "message": self.message,
        }


RunOutcome = Union[PipelineRun, PipelineFailure]


@dataclass(frozen=True)
class ResourceSample:
    timestamp_ms: int
    cpu_percent: float
    memory_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestampMs": int(self.timestamp_ms),
            "cpuPercent": float(self.cpu_percent),
            "memoryBytes": int(self.memory_bytes),
        }


@dataclass(frozen=True)
class TelemetrySnapshot:
    samples: Tuple[ResourceSample, ...]
    peak_cpu_percent: float
    peak_memory_bytes: int
    capacity: int
    degraded: bool = False
    consecutive_failures: int = 0

    @property
    def latest(self) -> Optional[ResourceSample]:
        return self.samples[-1] if self.samples else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "samples": [s.to_dict() for s in self.samples],
            "peakCpuPercent": float(self.peak_cpu_percent),
            "peakMemoryBytes": int(self.peak_memory_bytes),
            "capacity": int(self.capacity),
            "degraded": bool(self.degraded),
        }
