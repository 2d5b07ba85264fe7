from __future__ import annotations
from abc import ABC, abstractmethod
from habla.contracts import Direction, TranslationResult

class Translator(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def translate(self, text: str, direction: Direction) -> TranslationResult: ...

    def close(self) -> None:
        """Release model memory. Default: nothing to release."""
