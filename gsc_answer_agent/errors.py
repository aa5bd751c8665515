from __future__ import annotations


class AnswerEngineError(RuntimeError):
    """Base class for failures raised by the answer engine."""


class InvalidParametersError(AnswerEngineError):
    """A required intent parameter is missing or malformed."""

    def __init__(self, message: str, *, field: str = "") -> None:
        super().__init__(message)
        self.field = field


class UpstreamFetchError(AnswerEngineError):
    """The row source failed or returned a non-success payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_authorization_error(self) -> bool:
        if self.status_code in {401, 403}:
            return True
        return "not connected" in str(self).lower()
