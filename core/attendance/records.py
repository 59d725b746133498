"""Attendance records, class sessions and location fixes."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from core.errors import LocationUnavailable

PRESENCES_COLLECTION = "presences"
CLASSES_COLLECTION = "classes"

STATUS_PRESENT = "present"
STATUS_DENIED = "denied"
STATUS_COMPLETED = "completed"

NOTE_CONFIRMED = "face confirmed"
NOTE_NOT_FOUND = "not found in gallery"
NOTE_OTHER_USER = "belongs to another user"

# browser GeolocationPositionError codes
GEOLOCATION_ERROR_CODES = {"1": "denied", "2": "unavailable", "3": "timeout"}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string / epoch seconds / epoch millis -> aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> Optional["GeoPoint"]:
        if not data:
            return None
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(frozen=True)
class LocationFix:
    """A client-side position reading with its acquisition time."""

    point: GeoPoint
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None

    def age_seconds(self, now: datetime) -> Optional[float]:
        if self.timestamp is None:
            return None
        return (now - self.timestamp).total_seconds()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Optional["LocationFix"]:
        """Parse ``lat``/``lng``/``accuracy``/``locationTimestamp`` fields.

        Returns ``None`` when no coordinates were sent. A reported
        ``locationError`` raises ``LocationUnavailable`` with that reason.
        """
        error = payload.get("locationError") or payload.get("location_error")
        if error:
            reason = str(error).strip().lower()
            raise LocationUnavailable(GEOLOCATION_ERROR_CODES.get(reason, reason))
        lat = payload.get("lat", payload.get("latitude"))
        lng = payload.get("lng", payload.get("longitude"))
        if lat in (None, "") or lng in (None, ""):
            return None
        try:
            point = GeoPoint(lat=float(lat), lng=float(lng))
            accuracy = payload.get("accuracy")
            accuracy = float(accuracy) if accuracy not in (None, "") else None
            timestamp = parse_timestamp(payload.get("locationTimestamp") or payload.get("location_timestamp"))
        except (TypeError, ValueError) as exc:
            raise LocationUnavailable("unavailable", f"Invalid location data: {exc}") from exc
        if not (-90.0 <= point.lat <= 90.0 and -180.0 <= point.lng <= 180.0):
            raise LocationUnavailable("unavailable", "Location coordinates are out of range.")
        return cls(point=point, accuracy=accuracy, timestamp=timestamp)


@dataclass(frozen=True)
class Geofence:
    center: GeoPoint
    radius_meters: float


@dataclass
class ClassSession:
    class_id: str
    course_name: str = ""
    room: str = ""
    teacher_name: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_active: bool = True
    allowed_location: Optional[Geofence] = None

    @classmethod
    def from_document(cls, document: Mapping[str, Any], class_id: Optional[str] = None) -> "ClassSession":
        location = document.get("allowedLocation")
        fence = None
        if location:
            fence = Geofence(
                center=GeoPoint(lat=float(location["lat"]), lng=float(location["lng"])),
                radius_meters=float(location.get("radiusMeters", location.get("radius", 0))),
            )
        return cls(
            class_id=str(class_id or document.get("id")),
            course_name=document.get("courseName") or "",
            room=document.get("room") or "",
            teacher_name=document.get("teacherName") or "",
            start_time=parse_timestamp(document.get("startTime")),
            end_time=parse_timestamp(document.get("endTime")),
            is_active=bool(document.get("isActive", True)),
            allowed_location=fence,
        )

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "courseName": self.course_name,
            "room": self.room,
            "teacherName": self.teacher_name,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "isActive": self.is_active,
            "allowedLocation": None,
        }
        if self.allowed_location:
            document["allowedLocation"] = {
                **self.allowed_location.center.to_dict(),
                "radiusMeters": self.allowed_location.radius_meters,
            }
        return document

    def window(self, grace: timedelta) -> Tuple[Optional[datetime], Optional[datetime]]:
        start = self.start_time - grace if self.start_time else None
        end = self.end_time + grace if self.end_time else None
        return start, end

    def is_open_at(self, now: datetime, grace: timedelta) -> bool:
        start, end = self.window(grace)
        if start is not None and now < start:
            return False
        if end is not None and now > end:
            return False
        return True


@dataclass
class AttendanceRecord:
    identity_id: str
    status: str = STATUS_PRESENT
    display_name: str = ""
    contact_email: str = ""
    recognized: bool = False
    recognition_note: str = ""
    matcher_distance: Optional[float] = None
    recognized_identity_id: Optional[str] = None
    class_id: Optional[str] = None
    check_in_location: Optional[GeoPoint] = None
    check_out_location: Optional[GeoPoint] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    liveness_confidence: Optional[float] = None
    location_distance_meters: Optional[float] = None
    attempt_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    record_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_PRESENT and self.check_out_time is None

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "AttendanceRecord":
        known = {
            "id", "identityId", "userId", "status", "displayName", "userName", "contactEmail",
            "userEmail", "recognized", "recognitionNote", "matcherDistance", "recognizedIdentityId",
            "classId", "checkInLocation", "checkOutLocation", "checkInTime", "checkOutTime",
            "livenessConfidence", "locationDistanceMeters", "attemptId", "timestamp",
            "createdAt", "updatedAt",
        }
        distance = document.get("matcherDistance")
        return cls(
            record_id=document.get("id"),
            identity_id=str(document.get("identityId") or document.get("userId") or ""),
            status=document.get("status") or STATUS_PRESENT,
            display_name=document.get("displayName") or document.get("userName") or "",
            contact_email=document.get("contactEmail") or document.get("userEmail") or "",
            recognized=bool(document.get("recognized", False)),
            recognition_note=document.get("recognitionNote") or "",
            matcher_distance=float(distance) if distance is not None else None,
            recognized_identity_id=document.get("recognizedIdentityId"),
            class_id=document.get("classId"),
            check_in_location=GeoPoint.from_mapping(document.get("checkInLocation")),
            check_out_location=GeoPoint.from_mapping(document.get("checkOutLocation")),
            check_in_time=parse_timestamp(document.get("checkInTime")),
            check_out_time=parse_timestamp(document.get("checkOutTime")),
            liveness_confidence=document.get("livenessConfidence"),
            location_distance_meters=document.get("locationDistanceMeters"),
            attempt_id=document.get("attemptId"),
            timestamp=parse_timestamp(document.get("timestamp")),
            extra={k: v for k, v in document.items() if k not in known},
        )

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = dict(self.extra)
        document.update(
            {
                "identityId": self.identity_id,
                "displayName": self.display_name,
                "contactEmail": self.contact_email,
                "timestamp": format_timestamp(self.timestamp),
                "status": self.status,
                "recognized": self.recognized,
                "recognitionNote": self.recognition_note,
                "matcherDistance": self.matcher_distance,
                "recognizedIdentityId": self.recognized_identity_id,
                "classId": self.class_id,
                "checkInLocation": self.check_in_location.to_dict() if self.check_in_location else None,
                "checkOutLocation": self.check_out_location.to_dict() if self.check_out_location else None,
                "checkInTime": format_timestamp(self.check_in_time),
                "checkOutTime": format_timestamp(self.check_out_time),
                "livenessConfidence": self.liveness_confidence,
                "locationDistanceMeters": self.location_distance_meters,
                "attemptId": self.attempt_id,
            }
        )
        return document

    def to_dict(self) -> Dict[str, Any]:
        payload = self.to_document()
        payload["id"] = self.record_id
        return payload


__all__ = [
    "AttendanceRecord",
    "ClassSession",
    "Geofence",
    "GeoPoint",
    "LocationFix",
    "parse_timestamp",
    "format_timestamp",
    "PRESENCES_COLLECTION",
    "CLASSES_COLLECTION",
    "STATUS_PRESENT",
    "STATUS_DENIED",
    "STATUS_COMPLETED",
    "NOTE_CONFIRMED",
    "NOTE_NOT_FOUND",
    "NOTE_OTHER_USER",
]
