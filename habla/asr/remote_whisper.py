from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from habla.asr.base import Transcriber, Transcript
from habla.contracts import AudioBuffer, Direction
from habla.errors import BackendError, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1/audio/transcriptions"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_s: float = 0.5
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_s < 0:
            raise ValueError("backoff_s must be >= 0")

    def delay_before(self, attempt: int) -> float:
        """Sleep before `attempt` (2-based: the first retry)."""
        return self.backoff_s * (self.multiplier ** max(0, attempt - 2))


class _Transient(Exception):
    """One attempt failed in a way worth retrying."""


class RemoteWhisperTranscriber(Transcriber):
    """
    Whisper over HTTP (OpenAI-compatible /v1/audio/transcriptions).
    Timeouts, transport errors and 5xx are retried; 4xx is final.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str],
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = "whisper-1",
        timeout_s: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not (api_key or "").strip():
            raise ConfigurationError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable or pass --api-key"
            )
        if timeout_s <= 0:
            raise ConfigurationError("remote_timeout_s must be > 0")
        self.endpoint = endpoint
        self.model = model
        self.timeout_s = float(timeout_s)
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(self.timeout_s, connect=min(10.0, self.timeout_s)),
        )
        self._headers = {"Authorization": f"Bearer {api_key.strip()}"}

    @property
    def name(self) -> str:
        return "openai-whisper"

    def close(self) -> None:
        self._client.close()

    def transcribe(self, buffer: AudioBuffer, direction: Direction) -> Transcript:
        wav = buffer.to_wav_bytes()
        data = {
            "model": self.model,
            "language": direction.source_lang,
            "response_format": "json",
        }
        last_error = ""
        for attempt in range(1, self.retry.max_attempts + 1):
            if attempt > 1:
                delay = self.retry.delay_before(attempt)
                logger.warning(
                    "transcribe_retry",
                    extra={"attempt": attempt, "delay_s": round(delay, 3), "reason": last_error},
                )
                self._sleep(delay)
            try:
                text = self._post_once(wav, data, attempt)
            except _Transient as e:
                last_error = str(e)
                continue
            return Transcript(text=text, attempts=attempt)

        raise BackendError(
            f"Transcription failed after {self.retry.max_attempts} attempts: {last_error}",
            attempts=self.retry.max_attempts,
        )

    def _post_once(self, wav: bytes, data: dict, attempt: int) -> str:
        files = {"file": ("audio.wav", wav, "audio/wav")}
        logger.info("transcribe_post", extra={"endpoint": self.endpoint, "model": self.model, "attempt": attempt})
        try:
            response = self._client.post(self.endpoint, data=data, files=files, headers=self._headers)
        except httpx.TimeoutException as e:
            raise _Transient(f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise _Transient(f"transport error: {e}") from e

        status = response.status_code
        if status >= 500:
            raise _Transient(f"server error {status}")
        if status != 200:
            raise BackendError(
                f"OpenAI API error {status}: {_error_detail(response)}",
                attempts=attempt,
                status_code=status,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise BackendError("Failed to parse transcription response", attempts=attempt, status_code=status) from e
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise BackendError("Transcription response has no text field", attempts=attempt, status_code=status)
        return text


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip()[:300]
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if err:
            return str(err)
    return str(payload)[:300]
