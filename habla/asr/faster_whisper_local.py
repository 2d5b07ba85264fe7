from __future__ import annotations

import threading
from typing import Optional

from habla.asr.base import Transcriber, Transcript
from habla.contracts import AudioBuffer, Direction
from habla.errors import BackendError, ConfigurationError
from habla.platform import threads_hint


class LocalWhisperTranscriber(Transcriber):
    """
    On-device speech recognition with faster-whisper.
    The model must already be on disk (or in the local HF cache): nothing is downloaded.
    """

    def __init__(
        self,
        *,
        model_size: str = "base",
        device: str = "cpu",
        compute_type: str = "int8",  # good default for CPU
        beam_size: int = 1,
        cpu_threads: Optional[int] = None,
    ) -> None:
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.beam_size = beam_size
        self.cpu_threads = cpu_threads
        self._model = None
        self._model_lock = threading.Lock()

    @property
    def name(self) -> str:
        return "faster-whisper"

    def _get_model(self):
        with self._model_lock:
            if self._model is None:
                try:
                    from faster_whisper import WhisperModel
                except ImportError as e:
                    raise ConfigurationError(
                        "faster-whisper is not installed. Install with: python -m pip install faster-whisper"
                    ) from e
                try:
                    self._model = WhisperModel(
                        self.model_size,
                        device=self.device,
                        compute_type=self.compute_type,
                        cpu_threads=self.cpu_threads or threads_hint(),
                        local_files_only=True,
                    )
                except Exception as e:
                    raise ConfigurationError(
                        f"Local Whisper model {self.model_size!r} is not available: {e}"
                    ) from e
            return self._model

    def transcribe(self, buffer: AudioBuffer, direction: Direction) -> Transcript:
        model = self._get_model()
        try:
            segments, _info = model.transcribe(
                buffer.to_float32(),
                language=direction.source_lang,
                beam_size=self.beam_size,
                vad_filter=False,
                condition_on_previous_text=False,
            )
            parts = [(s.text or "").strip() for s in segments]
        except Exception as e:
            raise BackendError(f"faster-whisper failed: {e}", attempts=1) from e
        return Transcript(text=" ".join(p for p in parts if p), attempts=1)
