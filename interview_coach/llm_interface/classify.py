# llm_interface/classify.py
"""
Sort backend exceptions into the classes the callers react to.

TRANSIENT        overloaded / unavailable / rate limited. Retried with backoff.
DISABLED         API not enabled for the project. Never retried.
MODEL_NOT_FOUND  wrong or retired model name. Next candidate is tried.
OTHER            anything else. Logged and re-raised.
"""
from enum import Enum

from google.api_core import exceptions as google_exceptions

from interview_coach.errors import (
    BackendDisabled,
    InterviewCoachError,
    LLMServiceError,
    TransientBackendFailure,
)


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    DISABLED = "disabled"
    MODEL_NOT_FOUND = "model_not_found"
    OTHER = "other"


TRANSIENT_MARKERS = ("503", "overloaded", "UNAVAILABLE", "RESOURCE_EXHAUSTED", "429")
DISABLED_MARKERS = ("SERVICE_DISABLED", "has not been used", "activation")
MODEL_NOT_FOUND_MARKERS = ("404", "not found", "MODEL_NOT_FOUND", "does not exist")

_TRANSIENT_TYPES = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.ResourceExhausted,
    google_exceptions.TooManyRequests,
)


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, TransientBackendFailure):
        return ErrorKind.TRANSIENT
    if isinstance(exc, BackendDisabled):
        return ErrorKind.DISABLED

    message = str(exc)
    # disabled first: those arrive as typed 403/404 errors
    if any(m in message for m in DISABLED_MARKERS):
        return ErrorKind.DISABLED
    # a typed error is trusted over whatever its message mentions
    if isinstance(exc, _TRANSIENT_TYPES):
        return ErrorKind.TRANSIENT
    if isinstance(exc, google_exceptions.NotFound):
        return ErrorKind.MODEL_NOT_FOUND

    if any(m in message for m in MODEL_NOT_FOUND_MARKERS):
        return ErrorKind.MODEL_NOT_FOUND
    if any(m in message for m in TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT
    return ErrorKind.OTHER


def to_coach_error(exc: BaseException, backend: str) -> InterviewCoachError:
    """Typed error for a raw SDK exception, for callers that do not retry themselves."""
    if isinstance(exc, InterviewCoachError):
        return exc
    kind = classify_error(exc)
    if kind is ErrorKind.TRANSIENT:
        return TransientBackendFailure(f"{backend} is temporarily unavailable: {exc}")
    if kind is ErrorKind.DISABLED:
        return BackendDisabled(f"{backend} API is not enabled for this project", backend=backend)
    return LLMServiceError(f"{backend} generation failed: {exc}")
