from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from habla.app.diagnostics import hint_for_failure
from habla.app.services import HablaServices, build_request
from habla.contracts import CaptureInput, Direction, FileInput, PipelineFailure
from habla.errors import BusyError, ConfigurationError, GenerationError, HablaError
from habla.telemetry.sampler import host_memory_total_bytes

logger = logging.getLogger(__name__)

_ACQUIRE_KINDS = {"ConfigurationError", "NotFoundError", "FormatError", "DeviceError", "InvalidDurationError"}
_TRANSCRIBE_KINDS = {"BackendError", "NoSpeechError"}


class TranslateBody(BaseModel):
    direction: str = "es-en"
    text: str = ""


class RunBody(BaseModel):
    direction: str = "es-en"
    wav: Optional[str] = Field(default=None, description="WAV path on the server filesystem")
    seconds: Optional[float] = None


def failure_status(error_kind: str) -> int:
    if error_kind in _ACQUIRE_KINDS:
        return 422
    if error_kind in _TRANSCRIBE_KINDS:
        return 502
    if error_kind == "BusyError":
        return 503
    return 500


def _failure_response(failure: PipelineFailure) -> JSONResponse:
    payload = failure.to_dict()
    payload["hint"] = hint_for_failure(failure.error_kind)
    return JSONResponse(status_code=failure_status(failure.error_kind), content=payload)


def create_app(services: HablaServices, args: Any) -> FastAPI:
    """Local HTTP surface over one set of services (engine, sampler, orchestrator)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.sampler is not None:
            services.sampler.start()
        logger.info("web_startup", extra={"telemetry": services.sampler is not None})
        yield
        logger.info("web_shutdown")
        services.close()

    app = FastAPI(title="habla", lifespan=lifespan)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True, "translator": services.engine.name}

    @app.get("/stats")
    def stats():
        if services.sampler is None:
            return JSONResponse(status_code=404, content={"ok": False, "message": "telemetry is disabled"})
        payload = services.sampler.snapshot().to_dict()
        payload["memoryTotalBytes"] = host_memory_total_bytes()
        return payload

    @app.post("/stats/reset-peaks")
    def reset_peaks():
        if services.sampler is None:
            return JSONResponse(status_code=404, content={"ok": False, "message": "telemetry is disabled"})
        services.sampler.reset_peaks()
        return {"ok": True}

    # sync handlers run on the threadpool, so a long generation never blocks the loop
    @app.post("/translate")
    def translate(body: TranslateBody):
        try:
            direction = Direction.parse(body.direction)
            result = services.engine.translate(body.text, direction)
        except ConfigurationError as e:
            return JSONResponse(status_code=400, content={"ok": False, "errorKind": e.kind, "message": e.message})
        except BusyError as e:
            return JSONResponse(status_code=503, content={"ok": False, "errorKind": e.kind, "message": e.message})
        except GenerationError as e:
            logger.warning("web_translate_failed", extra={"error_kind": e.kind, "detail": e.message})
            return JSONResponse(
                status_code=500,
                content={"ok": False, "errorKind": e.kind, "message": e.message, "hint": hint_for_failure(e.kind)},
            )
        return {
            "ok": True,
            "direction": direction.value,
            "original": result.source_text,
            "translated": result.translated_text,
            "truncated": result.truncated,
        }

    @app.post("/run")
    def run(body: RunBody):
        """
        Run the full pipeline on a WAV file or a microphone recording.

        `wav` is a path on the server's own filesystem, read with the server
        process's permissions. The UI is meant for a single local user and
        binds to 127.0.0.1 by default; do not expose it on a shared network.
        """
        if body.wav:
            run_input = FileInput(path=body.wav)
        elif body.seconds is not None:
            run_input = CaptureInput(seconds=body.seconds)
        else:
            return _failure_response(
                PipelineFailure(stage="configure", error_kind="ConfigurationError", message="Provide 'wav' or 'seconds'")
            )
        try:
            request = build_request(args, run_input, direction=body.direction)
        except HablaError as e:
            return _failure_response(PipelineFailure(stage="configure", error_kind=e.kind, message=e.message))

        outcome = services.orchestrator.run(request)
        if isinstance(outcome, PipelineFailure):
            return _failure_response(outcome)
        return outcome.to_dict()

    return app
