from __future__ import annotations
import os
from .base import Translator
from .engine import TranslationEngine
from .llama import LlamaTranslator
from .phrasebook import PhrasebookTranslator
from habla.errors import ConfigurationError

def get_translator(
    provider: str | None = None,
    *,
    model_path: str = "",
    context_size: int = 2048,
    max_output_tokens: int = 256,
    temperature: float = 0.1,
) -> Translator:
    provider = (provider or os.getenv("HABLA_TRANSLATOR", "llama")).lower().strip()

    if provider == "llama":
        return LlamaTranslator.load(
            model_path,
            context_size,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
        )
    if provider == "phrasebook":
        return PhrasebookTranslator()

    raise ConfigurationError(f"Unknown translator provider: {provider}")


def load_engine(
    model_path: str,
    context_size: int = 2048,
    *,
    provider: str | None = None,
    max_output_tokens: int = 256,
    temperature: float = 0.1,
    queue_depth: int = 2,
) -> TranslationEngine:
    translator = get_translator(
        provider,
        model_path=model_path,
        context_size=context_size,
        max_output_tokens=max_output_tokens,
        temperature=temperature,
    )
    return TranslationEngine(translator, queue_depth=queue_depth)
