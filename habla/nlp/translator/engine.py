from __future__ import annotations

import logging
import time
from dataclasses import replace

from habla.concurrency import ExclusiveGate
from habla.contracts import Direction, TranslationResult
from habla.errors import EngineError, HablaError
from habla.nlp.translator.base import Translator

logger = logging.getLogger(__name__)


class TranslationEngine:
    """
    Single-owner handle around a loaded Translator.

    The model is an exclusively-mutating resource: one translate() runs at a
    time, up to `queue_depth` callers wait, and the rest get BusyError.
    """

    def __init__(self, translator: Translator, *, queue_depth: int = 2) -> None:
        self.translator = translator
        self._gate = ExclusiveGate(queue_depth=queue_depth, name="translation engine")
        self._closed = False

    @property
    def name(self) -> str:
        return self.translator.name

    def translate(self, text: str, direction: Direction) -> TranslationResult:
        if not (text or "").strip():
            return TranslationResult(source_text=text or "", translated_text="", provider=self.name)

        with self._gate.hold():
            if self._closed:
                raise EngineError("Translation engine has been closed")
            t0 = time.perf_counter()
            try:
                result = self.translator.translate(text, direction)
            except HablaError:
                raise
            except Exception as e:
                raise EngineError(f"{self.name} failed: {e}") from e
            elapsed = time.perf_counter() - t0

        if result.duration_s <= 0:
            result = replace(result, duration_s=elapsed)
        logger.info(
            "translate_done",
            extra={
                "provider": result.provider,
                "direction": direction.value,
                "chars_in": len(text),
                "tokens_out": result.generated_tokens,
                "truncated": result.truncated,
                "output_capped": result.output_capped,
                "ms": round(elapsed * 1000.0, 2),
            },
        )
        return result

    def close(self) -> None:
        with self._gate.hold():
            if not self._closed:
                self.translator.close()
                self._closed = True
