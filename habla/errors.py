from __future__ import annotations


class HablaError(RuntimeError):
    """Base for every typed failure a run can report."""

    kind = "HablaError"

    def __init__(self, message: str = "", *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        cls.kind = cls.__name__


class ConfigurationError(HablaError):
    pass


class AcquisitionError(HablaError):
    pass


class NotFoundError(AcquisitionError):
    pass


class FormatError(AcquisitionError):
    pass


class DeviceError(AcquisitionError):
    pass


class InvalidDurationError(AcquisitionError):
    pass


class TranscriptionError(HablaError):
    pass


class BackendError(TranscriptionError):
    def __init__(
        self,
        message: str = "",
        *,
        stage: str | None = None,
        attempts: int = 0,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, stage=stage)
        self.attempts = attempts
        self.status_code = status_code


class NoSpeechError(TranscriptionError):
    pass


class GenerationError(HablaError):
    pass


class LoadError(GenerationError):
    pass


class EngineError(GenerationError):
    pass


class ContextBudgetError(GenerationError):
    pass


class BusyError(HablaError):
    pass
