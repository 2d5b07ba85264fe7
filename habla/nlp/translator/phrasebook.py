from __future__ import annotations
from habla.contracts import Direction, TranslationResult
from .base import Translator

_ES_EN = {
    "hola": "Hello",
    "adiós": "Goodbye",
    "adios": "Goodbye",
    "gracias": "Thank you",
    "por favor": "Please",
    "lo siento": "I'm sorry",
    "sí": "Yes",
    "si": "Yes",
    "no": "No",
    "buenos días": "Good morning",
    "buenos dias": "Good morning",
    "buenas noches": "Good night",
    "¿cómo estás?": "How are you?",
    "como estas": "How are you?",
}

_EN_ES = {
    "hello": "Hola",
    "hi": "Hola",
    "goodbye": "Adiós",
    "bye": "Adiós",
    "thank you": "Gracias",
    "thanks": "Gracias",
    "please": "Por favor",
    "sorry": "Lo siento",
    "i'm sorry": "Lo siento",
    "yes": "Sí",
    "no": "No",
    "good morning": "Buenos días",
    "good night": "Buenas noches",
    "how are you?": "¿Cómo estás?",
    "how are you": "¿Cómo estás?",
}

_TABLES = {Direction.ES_EN: _ES_EN, Direction.EN_ES: _EN_ES}
_UNKNOWN = {Direction.ES_EN: "[Translation] {}", Direction.EN_ES: "[Traducción] {}"}


class PhrasebookTranslator(Translator):
    """Fixed phrase table for devices without a model. Deterministic, test-friendly."""

    @property
    def name(self) -> str:
        return "phrasebook"

    def translate(self, text: str, direction: Direction) -> TranslationResult:
        key = (text or "").strip().lower()
        out = _TABLES[direction].get(key) or _UNKNOWN[direction].format(text.strip())
        return TranslationResult(
            source_text=text,
            translated_text=out,
            generated_tokens=len(out.split()),
            provider=self.name,
        )
