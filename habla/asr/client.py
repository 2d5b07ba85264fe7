from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from habla.asr.base import Transcriber
from habla.asr.faster_whisper_local import LocalWhisperTranscriber
from habla.asr.remote_whisper import RemoteWhisperTranscriber, RetryPolicy
from habla.contracts import AudioBuffer, BackendSpec, Direction, LocalBackend, RemoteBackend, TranscriptionResult
from habla.errors import BackendError, ConfigurationError, NoSpeechError

logger = logging.getLogger(__name__)

TranscriberFactory = Callable[[BackendSpec], Transcriber]


class TranscriptionClient:
    """
    Turns an AudioBuffer into text through whichever backend the request names.
    One Transcriber is built per backend descriptor and reused, so the local
    model is loaded once.
    """

    def __init__(
        self,
        *,
        retry: Optional[RetryPolicy] = None,
        factory: Optional[TranscriberFactory] = None,
    ) -> None:
        self.retry = retry or RetryPolicy()
        self._factory = factory or self._build
        self._cache: Dict[BackendSpec, Transcriber] = {}
        self._lock = threading.Lock()

    def _build(self, backend: BackendSpec) -> Transcriber:
        if isinstance(backend, RemoteBackend):
            return RemoteWhisperTranscriber(
                api_key=backend.credential,
                endpoint=backend.endpoint,
                model=backend.model,
                timeout_s=backend.timeout_s,
                retry=self.retry,
            )
        if isinstance(backend, LocalBackend):
            return LocalWhisperTranscriber(
                model_size=backend.model,
                device=backend.device,
                compute_type=backend.compute_type,
            )
        raise ConfigurationError(f"Unknown transcription backend: {backend!r}")

    def select(self, backend: BackendSpec) -> Transcriber:
        with self._lock:
            transcriber = self._cache.get(backend)
            if transcriber is None:
                transcriber = self._factory(backend)
                self._cache[backend] = transcriber
            return transcriber

    def transcribe(self, buffer: AudioBuffer, direction: Direction, backend: BackendSpec) -> TranscriptionResult:
        transcriber = self.select(backend)
        if buffer.is_empty:
            raise BackendError("Refusing to transcribe an empty audio buffer", attempts=0)

        t0 = time.perf_counter()
        out = transcriber.transcribe(buffer, direction)
        elapsed = time.perf_counter() - t0

        text = (out.text or "").strip()
        if not text:
            raise NoSpeechError("No speech detected in audio")
        logger.info(
            "transcribe_done",
            extra={
                "backend": transcriber.name,
                "attempts": out.attempts,
                "ms": round(elapsed * 1000.0, 2),
                "chars": len(text),
                "audio_s": round(buffer.duration, 3),
            },
        )
        return TranscriptionResult(text=text, duration_s=elapsed, attempts=out.attempts, backend=transcriber.name)

    def close(self) -> None:
        with self._lock:
            for transcriber in self._cache.values():
                close = getattr(transcriber, "close", None)
                if callable(close):
                    close()
            self._cache.clear()
