from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from habla.asr.client import TranscriptionClient
from habla.audio.source import AudioSource
from habla.contracts import (
    AudioBuffer,
    CaptureInput,
    Direction,
    FileInput,
    PipelineFailure,
    PipelineRun,
    RunOutcome,
    RunRequest,
)
from habla.errors import ConfigurationError, EngineError, HablaError
from habla.nlp.translator.engine import TranslationEngine
from habla.pipeline.stages import STAGE_LABELS, RunStage, RunStageTracker

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """
    acquire -> transcribe -> translate, strictly in that order, for one request.

    Failures never escape run(): they come back as a PipelineFailure tagged with
    the stage that failed. Nothing is retried here.
    """

    def __init__(
        self,
        *,
        audio_source: AudioSource,
        transcription: TranscriptionClient,
        engine: TranslationEngine,
        max_workers: int = 1,
    ) -> None:
        self.audio_source = audio_source
        self.transcription = transcription
        self.engine = engine
        self._max_workers = max(1, int(max_workers))
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def _acquire(self, request: RunRequest) -> AudioBuffer:
        src = request.input
        if isinstance(src, FileInput):
            return self.audio_source.from_file(src.path)
        if isinstance(src, CaptureInput):
            return self.audio_source.from_capture(src.seconds)
        raise ConfigurationError(f"Unsupported input: {src!r}")

    def run(self, request: RunRequest) -> RunOutcome:
        tracker = RunStageTracker()
        input_desc = request.input.describe() if hasattr(request.input, "describe") else repr(request.input)
        logger.info("run_start", extra={"input": input_desc, "backend": getattr(request.backend, "kind", "?")})
        try:
            direction = Direction.parse(request.direction)
            # backend construction validates credentials before any audio is touched
            self.transcription.select(request.backend)

            self._advance(tracker, RunStage.ACQUIRING)
            buffer = self._acquire(request)

            self._advance(tracker, RunStage.TRANSCRIBING)
            transcription = self.transcription.transcribe(buffer, direction, request.backend)
            del buffer

            self._advance(tracker, RunStage.TRANSLATING)
            translation = self.engine.translate(transcription.text, direction)

            self._advance(tracker, RunStage.DONE)
        except HablaError as e:
            return self._failure(tracker, e.kind, e.message or str(e), input_desc)
        except Exception as e:
            logger.exception("run_unexpected_error", extra={"input": input_desc, "stage": tracker.state.value})
            return self._failure(tracker, EngineError.kind, str(e) or e.__class__.__name__, input_desc)

        timings = tracker.timings()
        logger.info(
            "run_done",
            extra={"input": input_desc, "direction": direction.value, **{f"{k}_s": v for k, v in timings.to_dict().items()}},
        )
        return PipelineRun(
            input=request.input,
            direction=direction,
            transcription=transcription,
            translation=translation,
            timings=timings,
        )

    def _advance(self, tracker: RunStageTracker, to: RunStage) -> None:
        left = tracker.state
        tracker.advance(to)
        if left is not RunStage.IDLE:
            logger.debug("stage_done", extra={"stage": STAGE_LABELS[left], "seconds": round(tracker.span(left), 6)})

    def _failure(self, tracker: RunStageTracker, kind: str, message: str, input_desc: str) -> PipelineFailure:
        stage = tracker.fail(message)
        failure = PipelineFailure(stage=stage, error_kind=kind, message=message, timings=tracker.timings())
        logger.warning(
            "run_failed",
            extra={"input": input_desc, "stage": stage, "error_kind": kind, "detail": message},
        )
        return failure

    def submit(self, request: RunRequest) -> "Future[RunOutcome]":
        """
        Queue a run on the worker pool. Cancelling the returned future only
        succeeds while the run has not started.
        """
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="habla-run")
            return self._executor.submit(self.run, request)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=True)

