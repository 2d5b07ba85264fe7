from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, List, Optional

import psutil

from habla.contracts import Direction, TranslationResult
from habla.errors import ContextBudgetError, EngineError, LoadError
from habla.nlp.translator.base import Translator
from habla.nlp.translator.prompts import END_OF_TURN, PROMPT_VERSION, build_prompt
from habla.platform import threads_hint

logger = logging.getLogger(__name__)

GGUF_MAGIC = b"GGUF"


def check_model_file(model_path: str) -> Path:
    """Validate a quantized GGUF model before handing it to llama.cpp."""
    if not (model_path or "").strip():
        raise LoadError("Model path is empty")
    path = Path(model_path)
    if not path.is_file():
        raise LoadError(f"Gemma model not found at: {path}. Please download the model first.")
    try:
        with path.open("rb") as f:
            magic = f.read(4)
    except OSError as e:
        raise LoadError(f"Cannot read model file {path}: {e}") from e
    if magic != GGUF_MAGIC:
        raise LoadError(f"{path} is not a GGUF model file")

    size = path.stat().st_size
    available = psutil.virtual_memory().available
    if size > available:
        raise LoadError(
            f"Model {path.name} needs {size // (1024 * 1024)} MB but only "
            f"{available // (1024 * 1024)} MB of memory is available"
        )
    return path


class LlamaTranslator(Translator):
    """Gemma (or any chat-tuned GGUF model) driven through llama-cpp-python."""

    def __init__(
        self,
        llm: Any,
        *,
        context_size: int,
        max_output_tokens: int = 256,
        temperature: float = 0.1,
        model_path: str = "",
    ) -> None:
        if context_size <= 0:
            raise LoadError("context_size must be > 0")
        if max_output_tokens <= 0:
            raise LoadError("max_output_tokens must be > 0")
        if max_output_tokens >= context_size:
            raise LoadError("max_output_tokens must be smaller than context_size")
        self.llm = llm
        self.context_size = int(context_size)
        self.max_output_tokens = int(max_output_tokens)
        self.temperature = float(temperature)
        self.model_path = model_path

    @classmethod
    def load(
        cls,
        model_path: str,
        context_size: int = 2048,
        *,
        max_output_tokens: int = 256,
        temperature: float = 0.1,
        n_threads: Optional[int] = None,
    ) -> "LlamaTranslator":
        if context_size <= 0:
            raise LoadError("context_size must be > 0")
        path = check_model_file(model_path)
        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise LoadError(
                "llama-cpp-python is not installed. Install with: python -m pip install llama-cpp-python"
            ) from e

        t0 = time.perf_counter()
        try:
            llm = Llama(
                model_path=str(path),
                n_ctx=int(context_size),
                n_threads=n_threads or threads_hint(),
                verbose=False,
            )
        except Exception as e:
            raise LoadError(f"Failed to load model {path}: {e}") from e

        try:
            translator = cls(
                llm,
                context_size=context_size,
                max_output_tokens=max_output_tokens,
                temperature=temperature,
                model_path=str(path),
            )
        except LoadError:
            _close_llm(llm)
            raise
        logger.info(
            "model_loaded",
            extra={
                "model_path": str(path),
                "n_ctx": int(context_size),
                "ms": round((time.perf_counter() - t0) * 1000.0, 2),
            },
        )
        return translator

    @property
    def name(self) -> str:
        return "llama.cpp"

    @property
    def prompt_budget(self) -> int:
        return self.context_size - self.max_output_tokens

    def _count(self, text: str, *, add_bos: bool) -> List[int]:
        return list(self.llm.tokenize(text.encode("utf-8"), add_bos=add_bos, special=True))

    def fit_prompt(self, text: str, direction: Direction) -> tuple[str, bool]:
        """
        Build the prompt, dropping the oldest source tokens when it would
        not leave room for max_output_tokens.
        """
        prompt = build_prompt(direction, text)
        if len(self._count(prompt, add_bos=True)) <= self.prompt_budget:
            return prompt, False

        overhead = len(self._count(build_prompt(direction, ""), add_bos=True))
        room = self.prompt_budget - overhead
        if room <= 0:
            raise ContextBudgetError(
                f"context_size {self.context_size} leaves no room for source text "
                f"(template {overhead} tokens, output cap {self.max_output_tokens})"
            )

        source_tokens = list(self.llm.tokenize(text.strip().encode("utf-8"), add_bos=False, special=False))
        keep = room
        while keep > 0:
            kept = self.llm.detokenize(source_tokens[-keep:]).decode("utf-8", errors="ignore")
            prompt = build_prompt(direction, kept)
            if len(self._count(prompt, add_bos=True)) <= self.prompt_budget:
                logger.warning(
                    "prompt_truncated",
                    extra={"source_tokens": len(source_tokens), "kept_tokens": keep, "budget": self.prompt_budget},
                )
                return prompt, True
            keep -= max(1, (keep // 20))
        raise ContextBudgetError("source text could not be fitted into the context budget")

    def translate(self, text: str, direction: Direction) -> TranslationResult:
        prompt, truncated = self.fit_prompt(text, direction)
        t0 = time.perf_counter()
        try:
            out = self.llm.create_completion(
                prompt,
                max_tokens=self.max_output_tokens,
                temperature=self.temperature,
                stop=[END_OF_TURN],
            )
        except Exception as e:
            raise EngineError(f"Generation failed: {e}") from e
        elapsed = time.perf_counter() - t0

        try:
            choice = out["choices"][0]
            translated = str(choice.get("text") or "").strip()
            finish_reason = choice.get("finish_reason")
            usage = out.get("usage") or {}
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise EngineError(f"Unexpected completion payload: {e}") from e

        generated = int(usage.get("completion_tokens") or 0)
        if not generated and translated:
            generated = len(self._count(translated, add_bos=False))
        return TranslationResult(
            source_text=text,
            translated_text=translated,
            duration_s=elapsed,
            generated_tokens=generated,
            provider=self.name,
            truncated=truncated,
            output_capped=finish_reason == "length",
            prompt_version=PROMPT_VERSION,
        )

    def close(self) -> None:
        if self.llm is not None:
            _close_llm(self.llm)
            self.llm = None


def _close_llm(llm: Any) -> None:
    close = getattr(llm, "close", None)
    if callable(close):
        close()

