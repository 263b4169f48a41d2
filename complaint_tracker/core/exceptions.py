"""
Exceptions raised by the complaint lifecycle core.

Every error a caller can see derives from ComplaintError and carries an
error code, an HTTP status and a details mapping, so the API layer can
render them uniformly.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    FORBIDDEN = "FORBIDDEN"


class ComplaintError(Exception):
    error_code: ErrorCode = ErrorCode.VALIDATION_FAILED
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.error_code.value,
                "details": self.details,
                "type": self.__class__.__name__,
            }
        }

    def __str__(self) -> str:
        return f"{self.error_code.value}: {self.message}"


class ValidationFailed(ComplaintError):
    """Malformed or missing input. `fields` maps each offending field to its problem."""

    error_code = ErrorCode.VALIDATION_FAILED
    status_code = 400

    def __init__(self, fields: Dict[str, str], message: str = "Validation failed"):
        self.fields = dict(fields)
        super().__init__(message, {"fields": self.fields})


class ComplaintNotFound(ComplaintError):
    error_code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, complaint_id: str):
        self.complaint_id = complaint_id
        super().__init__(
            f"Complaint {complaint_id} not found",
            {"complaint_id": complaint_id},
        )


NotFound = ComplaintNotFound


class InvalidTransition(ComplaintError):
    error_code = ErrorCode.INVALID_TRANSITION
    status_code = 409

    def __init__(self, current: str, requested: str, allowed: Optional[List[str]] = None):
        self.current = current
        self.requested = requested
        self.allowed = list(allowed or [])
        super().__init__(
            f"Invalid transition from {current} to {requested}",
            {"current": current, "requested": requested, "allowed": self.allowed},
        )


class ResourceExhausted(ComplaintError):
    error_code = ErrorCode.RESOURCE_EXHAUSTED
    status_code = 503

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            "Failed to generate a unique complaint ID. Please try again.",
            {"attempts": attempts},
        )


class ConcurrentModification(ComplaintError):
    error_code = ErrorCode.CONCURRENT_MODIFICATION
    status_code = 409

    def __init__(self, complaint_id: str, attempts: int):
        self.complaint_id = complaint_id
        self.attempts = attempts
        super().__init__(
            f"Complaint {complaint_id} was modified concurrently",
            {"complaint_id": complaint_id, "attempts": attempts},
        )


class StoreUnavailable(ComplaintError):
    error_code = ErrorCode.STORE_UNAVAILABLE
    status_code = 503

    def __init__(self, reason: str):
        super().__init__("Complaint store unavailable", {"reason": reason})


class Forbidden(ComplaintError):
    error_code = ErrorCode.FORBIDDEN
    status_code = 403

    def __init__(self, message: str = "Admin privileges required"):
        super().__init__(message)


class DuplicateComplaintId(Exception):
    """Raised by a repository when an insert collides on complaint_id."""

    def __init__(self, complaint_id: str):
        self.complaint_id = complaint_id
        super().__init__(f"Duplicate complaint_id {complaint_id}")
