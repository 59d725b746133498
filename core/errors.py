"""Error taxonomy shared by the recognition and attendance pipeline.

Every error carries a machine-readable ``code`` and a user-facing ``message``
so the HTTP layer can surface it without knowing where it was raised.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class AttendanceError(Exception):
    """Base class for recoverable, user-facing pipeline failures."""

    code = "attendance_error"
    retry = True
    default_message = "Attendance could not be recorded. Please try again."

    def __init__(self, message: Optional[str] = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "message": self.message, "retry": self.retry}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class ModelLoadError(AttendanceError):
    code = "model_unavailable"
    default_message = "Face models could not be loaded."

    def __init__(self, message: Optional[str] = None, *, tried: Optional[Dict[str, str]] = None) -> None:
        self.tried = dict(tried or {})
        if message is None:
            attempts = "; ".join(f"{source}: {error}" for source, error in self.tried.items())
            message = f"Face models could not be loaded (tried {attempts or 'no sources'})."
        super().__init__(message, tried=self.tried)


class NoFaceDetected(AttendanceError):
    code = "no_face"
    default_message = "No face detected. Center your face in the frame and try again."


class InvalidImage(AttendanceError):
    code = "invalid_image"
    default_message = "The captured image could not be read."


class DimensionMismatch(AttendanceError):
    code = "dimension_mismatch"
    retry = False
    default_message = "Stored face samples have inconsistent lengths."

    def __init__(self, message: Optional[str] = None, *, lengths: Optional[set] = None) -> None:
        self.lengths = sorted(lengths or ())
        if message is None and self.lengths:
            message = f"Face samples have mismatched lengths: {self.lengths}"
        super().__init__(message, lengths=self.lengths)


class ContextRejected(AttendanceError):
    code = "context_rejected"
    default_message = "Check-in rejected."


class LocationUnavailable(AttendanceError):
    code = "location_unavailable"

    MESSAGES = {
        "denied": "Location permission denied. Allow location access and try again.",
        "timeout": "Timed out acquiring your location. Move to an open area and try again.",
        "stale": "Your location fix is too old. Refresh your location and try again.",
        "unavailable": "Location is unavailable on this device.",
    }

    def __init__(self, reason: str = "unavailable", message: Optional[str] = None) -> None:
        self.reason = reason if reason in self.MESSAGES else "unavailable"
        super().__init__(message or self.MESSAGES[self.reason], reason=self.reason)


class StoreUnavailable(AttendanceError):
    code = "store_unavailable"
    default_message = "The attendance store is unavailable. Your capture was kept; try again."


class NoOpenAttendance(AttendanceError):
    code = "no_open_attendance"
    retry = False
    default_message = "There is no open check-in to close."


class IdentityError(AttendanceError):
    code = "identity_error"
    retry = False
    default_message = "Could not verify your identity with the provider."


__all__ = [
    "AttendanceError",
    "ModelLoadError",
    "NoFaceDetected",
    "InvalidImage",
    "DimensionMismatch",
    "ContextRejected",
    "LocationUnavailable",
    "StoreUnavailable",
    "NoOpenAttendance",
    "IdentityError",
]
