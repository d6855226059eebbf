from typing import Optional, Dict, Any


class InterviewCoachError(Exception):
    """Base exception for interview coach errors."""

    def __init__(self, message: str, status_code: int = 500, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


# ---------- Speech capture ------------------------------------------- #

class CaptureUnavailable(InterviewCoachError):
    """Speech capture is missing or gave up; recording continues without a transcript."""
    def __init__(self, message: str = "Speech capture unavailable"):
        super().__init__(message, status_code=503)


class CapturePermissionDenied(InterviewCoachError):
    """Microphone permission denied or device inaccessible."""
    def __init__(self, message: str = "Microphone access denied", code: Optional[str] = None):
        super().__init__(message, status_code=403, payload={'code': code} if code else None)
        self.code = code


# ---------- Backends -------------------------------------------------- #

class TransientBackendFailure(InterviewCoachError):
    """Backend overloaded or unavailable; retried with backoff."""
    def __init__(self, message: str, attempts: Optional[int] = None):
        super().__init__(message, status_code=503, payload={'attempts': attempts} if attempts else None)
        self.attempts = attempts


class BackendDisabled(InterviewCoachError):
    """Backend API not enabled or not provisioned. Never retried."""
    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message, status_code=503, payload={'backend': backend} if backend else None)


class NoAnalysisBackendAvailable(InterviewCoachError):
    def __init__(self, message: str = "No analysis backend available", reasons: Optional[Dict[str, str]] = None):
        super().__init__(message, status_code=503, payload={'reasons': reasons} if reasons else None)
        self.reasons = reasons or {}


class LLMServiceError(InterviewCoachError):
    def __init__(self, message: str):
        super().__init__(message, status_code=500)


# ---------- Replies --------------------------------------------------- #

class MalformedOrchestratorReply(InterviewCoachError):
    """The conversation model replied with something that is not the expected JSON."""
    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message, status_code=500)
        self.raw = raw


class MalformedAnalysisReply(InterviewCoachError):
    """Recovered through the legacy parser; logged, never raised to callers."""
    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message, status_code=500)
        self.raw = raw


# ---------- Input / session ------------------------------------------- #

class EmptyInput(InterviewCoachError):
    def __init__(self, message: str = "Transcript is empty", field: Optional[str] = None):
        super().__init__(message, status_code=400, payload={'field': field} if field else None)


class MediaTooLarge(InterviewCoachError):
    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Media too large ({size / 1024 / 1024:.2f}MB). Maximum: {limit / 1024 / 1024:.0f}MB",
            status_code=413,
            payload={'size': size, 'limit': limit},
        )


class SessionNotFound(InterviewCoachError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found", status_code=404, payload={'session_id': session_id})


class SessionAlreadyExists(InterviewCoachError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} already exists", status_code=409, payload={'session_id': session_id})


class TurnInProgress(InterviewCoachError):
    def __init__(self, session_id: str, status: str):
        super().__init__(
            f"Session {session_id} is {status}; wait for the current turn to finish",
            status_code=409,
            payload={'session_id': session_id, 'status': status},
        )


class InvalidTransition(InterviewCoachError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move from {current} to {target}", status_code=409,
                         payload={'from': current, 'to': target})


class InvalidMediaRef(InterviewCoachError):
    def __init__(self, ref: str, reason: str):
        super().__init__(f"Invalid media reference: {reason}", status_code=400, payload={'ref': ref[:80]})
