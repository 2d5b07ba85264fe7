from __future__ import annotations

import httpx
import numpy as np
import pytest

from habla.asr.remote_whisper import RemoteWhisperTranscriber, RetryPolicy
from habla.contracts import AudioBuffer, Direction
from habla.errors import BackendError, ConfigurationError

ENDPOINT = "https://whisper.test/v1/audio/transcriptions"


def _buffer() -> AudioBuffer:
    return AudioBuffer(samples=np.zeros(1600, dtype=np.int16))


def _transcriber(handler, *, max_attempts: int = 3, sleeps: list[float] | None = None) -> RemoteWhisperTranscriber:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return RemoteWhisperTranscriber(
        api_key="sk-test",
        endpoint=ENDPOINT,
        retry=RetryPolicy(max_attempts=max_attempts, backoff_s=0.5),
        client=client,
        sleep=(sleeps.append if sleeps is not None else (lambda _s: None)),
    )


def test_missing_credential_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        RemoteWhisperTranscriber(api_key=None)
    with pytest.raises(ConfigurationError):
        RemoteWhisperTranscriber(api_key="   ")


def test_request_shape() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"text": "hola"})

    out = _transcriber(handler).transcribe(_buffer(), Direction.ES_EN)
    assert out.text == "hola"
    assert out.attempts == 1
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == ENDPOINT
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = request.read()
    assert b'name="language"' in body and b"\r\n\r\nes\r\n" in body
    assert b'name="model"' in body and b"whisper-1" in body
    assert b'filename="audio.wav"' in body
    assert b"RIFF" in body


def test_fails_twice_then_succeeds_reports_three_attempts() -> None:
    calls = {"n": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, json={"error": {"message": "overloaded"}})
        return httpx.Response(200, json={"text": "hello there"})

    out = _transcriber(handler, sleeps=sleeps).transcribe(_buffer(), Direction.EN_ES)
    assert out.text == "hello there"
    assert out.attempts == 3
    assert calls["n"] == 3
    assert sleeps == [0.5, 1.0]


def test_always_failing_stops_at_cap() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendError) as exc:
        _transcriber(handler, max_attempts=4).transcribe(_buffer(), Direction.ES_EN)
    assert calls["n"] == 4
    assert exc.value.attempts == 4


def test_timeout_is_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"text": "ok"})

    out = _transcriber(handler).transcribe(_buffer(), Direction.ES_EN)
    assert out.attempts == 2


@pytest.mark.parametrize("status", [400, 401, 429])
def test_client_errors_are_not_retried(status: int) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(status, json={"error": {"message": "Invalid API key"}})

    with pytest.raises(BackendError) as exc:
        _transcriber(handler).transcribe(_buffer(), Direction.ES_EN)
    assert calls["n"] == 1
    assert exc.value.status_code == status
    assert "Invalid API key" in exc.value.message


def test_malformed_payload_is_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"transcript": "wrong field"})

    with pytest.raises(BackendError, match="no text field"):
        _transcriber(handler).transcribe(_buffer(), Direction.ES_EN)


def test_retry_policy_backoff() -> None:
    policy = RetryPolicy(max_attempts=4, backoff_s=0.5, multiplier=2.0)
    assert [policy.delay_before(n) for n in (2, 3, 4)] == [0.5, 1.0, 2.0]
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
