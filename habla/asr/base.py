from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from habla.contracts import AudioBuffer, Direction

@dataclass(frozen=True)
class Transcript:
    text: str
    attempts: int = 1

class Transcriber(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def transcribe(self, buffer: AudioBuffer, direction: Direction) -> Transcript: ...
