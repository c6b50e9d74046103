"""Error taxonomy for the practice engine.

- TransportError: non-2xx or network failure against the backend or the AI provider
- ParseError: AI response could not be coerced to JSON by any strategy
- ValidationRefusal: AI response parsed but lacks a required field
- UserInputError: a required field was left blank or out of range
- InvalidTransition: a session action was requested in the wrong state

GenerationFailure and its subclasses wrap a TransportError or ParseError
for the AI operations that are allowed to fail loudly.
"""

from __future__ import annotations


class MateAIError(Exception):
    """Base error for the practice engine."""

    pass


class TransportError(MateAIError):
    """HTTP or network failure. status_code is None for network errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(MateAIError):
    """No extraction strategy produced a JSON object."""

    def __init__(self, message: str, reasons: list[str] | None = None):
        super().__init__(message)
        self.reasons = reasons or []


class ValidationRefusal(MateAIError):
    """Parsed AI response is missing required fields."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class UserInputError(MateAIError):
    """Required user input is blank or invalid."""

    pass


class GenerationFailure(MateAIError):
    """An AI operation failed; `cause` is the underlying error."""

    def __init__(self, message: str, cause: MateAIError):
        super().__init__(message)
        self.cause = cause

    @property
    def status_code(self) -> int | None:
        if isinstance(self.cause, TransportError):
            return self.cause.status_code
        return None


class AnswerValidationFailure(GenerationFailure):
    """Correctness could not be determined."""

    pass


class ReportGenerationFailure(GenerationFailure):
    """Report could not be generated."""

    pass


class InvalidTransition(MateAIError):
    """Action not allowed in the session's current state."""

    pass
