from __future__ import annotations

import contextlib
import logging
import math
from typing import Optional

from habla.audio.wav import read_pcm16_wav
from habla.concurrency import ExclusiveGate
from habla.contracts import CHANNELS, SAMPLE_RATE, AudioBuffer
from habla.errors import BusyError, DeviceError, InvalidDurationError

logger = logging.getLogger(__name__)

MAX_CAPTURE_SECONDS = 300.0


class AudioSource:
    """
    Produces mono 16 kHz PCM16 buffers from a WAV file or the microphone.
    Live capture uses the `sounddevice` package (PortAudio).
    """

    def __init__(
        self,
        *,
        device: Optional[int] = None,
        max_capture_seconds: float = MAX_CAPTURE_SECONDS,
        read_seconds: float = 0.1,
    ) -> None:
        if max_capture_seconds <= 0:
            raise ValueError("max_capture_seconds must be > 0")
        if read_seconds <= 0:
            raise ValueError("read_seconds must be > 0")
        self.device = device
        self.max_capture_seconds = float(max_capture_seconds)
        self.read_seconds = float(read_seconds)
        # overlapping live captures are not meaningful, so nothing queues here
        self._capture_gate = ExclusiveGate(queue_depth=0, name="capture device")

    @staticmethod
    def list_devices() -> str:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise DeviceError(
                "sounddevice is not installed. Install with: python -m pip install sounddevice"
            ) from e
        return str(sd.query_devices())

    def from_file(self, path: str) -> AudioBuffer:
        buffer = read_pcm16_wav(path)
        logger.info(
            "audio_file_loaded",
            extra={"path": str(path), "samples": len(buffer), "seconds": round(buffer.duration, 3)},
        )
        return buffer

    def validate_duration(self, seconds: float) -> float:
        try:
            value = float(seconds)
        except (TypeError, ValueError) as e:
            raise InvalidDurationError(f"Capture duration must be a number, got {seconds!r}") from e
        if not math.isfinite(value) or value <= 0:
            raise InvalidDurationError(f"Capture duration must be > 0 seconds, got {seconds!r}")
        if value > self.max_capture_seconds:
            raise InvalidDurationError(
                f"Capture duration {value:g}s exceeds the {self.max_capture_seconds:g}s limit"
            )
        return value

    @contextlib.contextmanager
    def _open_stream(self):
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise DeviceError(
                "sounddevice is not installed. Install with: python -m pip install sounddevice"
            ) from e

        with contextlib.ExitStack() as stack:
            # entering the stream starts it; that can fail too
            try:
                if self.device is None:
                    sd.query_devices(kind="input")
                stream = stack.enter_context(
                    sd.RawInputStream(
                        samplerate=SAMPLE_RATE,
                        channels=CHANNELS,
                        dtype="int16",
                        device=self.device,
                        blocksize=0,  # let PortAudio choose
                    )
                )
            except Exception as e:
                raise DeviceError(
                    "Failed to open microphone stream. "
                    "Try --list-devices and select a device id with --device."
                ) from e
            yield stream

    def from_capture(self, seconds: float) -> AudioBuffer:
        duration = self.validate_duration(seconds)
        try:
            with self._capture_gate.hold():
                pcm16 = self._record(duration)
        except BusyError as e:
            raise DeviceError("A capture is already in progress on this device") from e

        buffer = AudioBuffer.from_pcm16(pcm16)
        if buffer.is_empty:
            raise DeviceError("Input device returned no audio")
        logger.info(
            "audio_captured",
            extra={"device": self.device, "samples": len(buffer), "seconds": round(buffer.duration, 3)},
        )
        return buffer

    def _record(self, seconds: float) -> bytes:
        total_frames = int(round(seconds * SAMPLE_RATE))
        frames_per_read = max(1, int(round(self.read_seconds * SAMPLE_RATE)))
        captured = bytearray()
        frames_captured = 0

        with self._open_stream() as stream:
            while frames_captured < total_frames:
                to_read = min(frames_per_read, total_frames - frames_captured)
                try:
                    data, overflowed = stream.read(to_read)
                except Exception as e:
                    raise DeviceError(f"Microphone read failed: {e}") from e
                if overflowed:
                    logger.warning("audio_capture_overflow", extra={"frames_captured": frames_captured})
                captured.extend(data)
                frames_captured += to_read

        return bytes(captured)

