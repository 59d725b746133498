"""Check-in context validation: freshness of the location fix, class window,
geofence and the optional liveness/quality check.

Every failure is a hard stop raised as ``ContextRejected`` or
``LocationUnavailable``; nothing here writes records.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from geopy.distance import geodesic

from core.attendance.records import ClassSession, GeoPoint, LocationFix
from core.errors import ContextRejected, LocationUnavailable

DistanceFn = Callable[[GeoPoint, GeoPoint], float]


def geodesic_distance_m(a: GeoPoint, b: GeoPoint) -> float:
    return float(geodesic(a.as_tuple(), b.as_tuple()).meters)


@dataclass
class ContextDecision:
    distance_meters: Optional[float] = None
    liveness_confidence: Optional[float] = None
    remote_record_id: Optional[str] = None
    remote_timestamp: Optional[str] = None


CLOCK_SKEW_SECONDS = 5


def require_fresh_location(
    location: Optional[LocationFix],
    now: datetime,
    max_age_seconds: Optional[float],
) -> LocationFix:
    """Return ``location`` if it is recent enough to check in with.

    With a max age set, an undated fix counts as stale, and so does one dated
    further in the future than the allowed clock skew.
    """
    if location is None:
        raise LocationUnavailable("unavailable")
    if max_age_seconds is None:
        return location
    age = location.age_seconds(now)
    if age is None or age > max_age_seconds or age < -CLOCK_SKEW_SECONDS:
        raise LocationUnavailable("stale")
    return location


class LocalContextValidator:
    """Validates a check-in against the class record it targets."""

    def __init__(
        self,
        *,
        classes: Any,
        grace_minutes: float = 15,
        location_max_age_seconds: Optional[float] = 60,
        liveness: Any = None,
        distance_fn: DistanceFn = geodesic_distance_m,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._classes = classes
        self._grace = timedelta(minutes=grace_minutes)
        self._max_age = location_max_age_seconds
        self._liveness = liveness
        self._distance = distance_fn
        self._logger = logger or logging.getLogger(__name__)

    def load_class(self, class_id: str) -> ClassSession:
        session = self._classes.get(class_id)
        if session is None:
            raise ContextRejected(f"Class {class_id} was not found.")
        if not session.is_active:
            raise ContextRejected(f"Class {class_id} is not active.")
        return session

    def validate(
        self,
        *,
        class_id: Optional[str],
        location: Optional[LocationFix],
        image: Any = None,
        now: Optional[datetime] = None,
    ) -> ContextDecision:
        now = now or datetime.now(timezone.utc)
        decision = ContextDecision()

        if class_id:
            fix = require_fresh_location(location, now, self._max_age)
            session = self.load_class(class_id)
            if not session.is_open_at(now, self._grace):
                start, end = session.window(self._grace)
                self._logger.info(
                    "[Attendance] Class %s closed at %s (window %s - %s)", class_id, now, start, end
                )
                raise ContextRejected("Check-in is outside the class time window.")
            fence = session.allowed_location
            if fence is not None:
                distance = self._distance(fix.point, fence.center)
                decision.distance_meters = round(distance, 2)
                if distance > fence.radius_meters:
                    self._logger.info(
                        "[Attendance] Geofence reject for class %s: %.1fm > %.1fm",
                        class_id, distance, fence.radius_meters,
                    )
                    raise ContextRejected(
                        f"You are {round(distance)}m from the classroom (max {round(fence.radius_meters)}m).",
                        distance_meters=decision.distance_meters,
                        radius_meters=fence.radius_meters,
                    )

        if self._liveness is not None and image is not None:
            result = self._liveness.evaluate(image)
            decision.liveness_confidence = result.confidence
            if not result.passed:
                raise ContextRejected(result.reason or "Liveness check failed.")
        return decision


class RemoteContextValidator:
    """Delegates the whole context check to the anti-fraud backend."""

    def __init__(
        self,
        oracle: Any,
        *,
        location_max_age_seconds: Optional[float] = 60,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._oracle = oracle
        self._max_age = location_max_age_seconds
        self._logger = logger or logging.getLogger(__name__)

    def validate(
        self,
        *,
        class_id: Optional[str],
        location: Optional[LocationFix],
        image_bytes: Optional[bytes] = None,
        now: Optional[datetime] = None,
    ) -> ContextDecision:
        fix = require_fresh_location(location, now or datetime.now(timezone.utc), self._max_age)
        verdict = self._oracle.check_in(class_id=class_id, location=fix.point, image_bytes=image_bytes)
        if not verdict.success:
            raise ContextRejected(verdict.error or "Check-in rejected by the anti-fraud service.")
        return ContextDecision(
            distance_meters=verdict.distance,
            remote_record_id=verdict.record_id,
            remote_timestamp=verdict.timestamp,
        )


__all__ = [
    "CLOCK_SKEW_SECONDS",
    "ContextDecision",
    "LocalContextValidator",
    "RemoteContextValidator",
    "geodesic_distance_m",
    "require_fresh_location",
]
