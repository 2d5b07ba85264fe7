from __future__ import annotations

import wave
from pathlib import Path

from habla.contracts import CHANNELS, SAMPLE_RATE, SAMPLE_WIDTH, AudioBuffer
from habla.errors import FormatError, NotFoundError


def read_pcm16_wav(path: str | Path) -> AudioBuffer:
    """Decode a mono 16 kHz 16-bit WAV file into an AudioBuffer."""
    p = Path(path)
    if not p.is_file():
        raise NotFoundError(f"Audio file not found: {p}")

    try:
        with wave.open(str(p), "rb") as wf:
            channels = wf.getnchannels()
            width = wf.getsampwidth()
            rate = wf.getframerate()
            n_frames = wf.getnframes()
            if channels != CHANNELS:
                raise FormatError(f"{p}: expected mono audio, got {channels} channels")
            if width != SAMPLE_WIDTH:
                raise FormatError(f"{p}: expected 16-bit samples, got {width * 8}-bit")
            if rate != SAMPLE_RATE:
                raise FormatError(f"{p}: expected {SAMPLE_RATE} Hz, got {rate} Hz")
            pcm16 = wf.readframes(n_frames)
    except FileNotFoundError as e:
        # removed between the is_file() check and the open
        raise NotFoundError(f"Audio file not found: {p}") from e
    except (wave.Error, EOFError) as e:
        raise FormatError(f"{p}: not a readable PCM WAV file ({e})") from e
    except OSError as e:
        raise FormatError(f"{p}: cannot be read ({e})") from e

    try:
        buffer = AudioBuffer.from_pcm16(pcm16, sample_rate=rate)
    except ValueError as e:
        raise FormatError(f"{p}: truncated sample data ({len(pcm16)} bytes)") from e
    if buffer.is_empty:
        raise FormatError(f"{p}: contains no audio frames")
    return buffer
