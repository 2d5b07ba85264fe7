from __future__ import annotations

import logging
import wave
from pathlib import Path

import numpy as np
import pytest

from habla.app import config as app_config


def write_wav(path: Path, *, seconds: float, rate: int = 16000, channels: int = 1, width: int = 2) -> Path:
    frames = int(round(seconds * rate))
    t = np.arange(frames * channels) / float(rate)
    samples = (np.sin(2 * np.pi * 220.0 * t) * 8000).astype(np.int16)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(width)
        wf.setframerate(rate)
        if width == 2:
            wf.writeframes(samples.tobytes())
        else:
            wf.writeframes(bytes(frames * channels * width))
    return path


@pytest.fixture
def wav_factory(tmp_path: Path):
    def _make(name: str = "speech.wav", **kwargs) -> Path:
        return write_wav(tmp_path / name, **kwargs)

    return _make


@pytest.fixture
def config_home(tmp_path: Path, monkeypatch) -> Path:
    home = tmp_path / "config-home"
    monkeypatch.setattr(app_config, "user_config_dir", lambda appname, appauthor=None: str(home))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("HABLA_MODEL_PATH", raising=False)
    return home


@pytest.fixture(autouse=True)
def reset_app_logger():
    yield
    # main() leaves the "habla" logger non-propagating
    logger = logging.getLogger("habla")
    for h in logger.handlers:
        h.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
