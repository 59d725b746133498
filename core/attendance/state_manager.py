"""Attendance validator: the check-in/check-out state machine.

An attempt moves ``capturing -> embedding -> matching -> context_validation``
and ends ``recorded`` or ``rejected``. A rejected attempt goes back to
``capturing`` with its identity and class preserved so the client can retry
in place; pending attempts live in an ``AttemptRegistry`` keyed by id.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from core.attendance.context import ContextDecision, require_fresh_location
from core.attendance.records import (
    NOTE_CONFIRMED,
    NOTE_NOT_FOUND,
    NOTE_OTHER_USER,
    STATUS_DENIED,
    STATUS_PRESENT,
    AttendanceRecord,
    LocationFix,
)
from core.errors import (
    AttendanceError,
    InvalidImage,
    LocationUnavailable,
    NoFaceDetected,
    NoOpenAttendance,
    StoreUnavailable,
)
from core.recognition.gallery import Match, MatchResult

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AttemptState(str, Enum):
    CAPTURING = "capturing"
    EMBEDDING = "embedding"
    MATCHING = "matching"
    CONTEXT_VALIDATION = "context_validation"
    RECORDED = "recorded"
    REJECTED = "rejected"


@dataclass
class CheckInAttempt:
    identity_id: str
    display_name: str = ""
    contact_email: str = ""
    class_id: Optional[str] = None
    image: Optional[np.ndarray] = None
    image_bytes: Optional[bytes] = None
    location: Optional[LocationFix] = None
    location_error: Optional[str] = None
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: AttemptState = AttemptState.CAPTURING
    cancelled: bool = False
    embedding: Optional[List[float]] = None
    match: Optional[MatchResult] = None
    sample_recorded: bool = False
    context: Optional[ContextDecision] = None
    last_error: Optional[str] = None
    touched_at: float = field(default_factory=time.monotonic)

    def replace_capture(self, image: Optional[np.ndarray], image_bytes: Optional[bytes]) -> None:
        """A new photo invalidates everything derived from the old one."""
        self.image = image
        self.image_bytes = image_bytes
        self.embedding = None
        self.match = None
        self.sample_recorded = False
        self.context = None

    def context_summary(self) -> Dict[str, Any]:
        return {"identity_id": self.identity_id, "class_id": self.class_id}


@dataclass
class CheckInOutcome:
    attempt: CheckInAttempt
    record: Optional[AttendanceRecord] = None
    error: Optional[str] = None
    message: str = ""
    retry: bool = False

    @property
    def ok(self) -> bool:
        return self.record is not None

    @property
    def status(self) -> str:
        return AttemptState.RECORDED.value if self.ok else AttemptState.REJECTED.value

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.ok,
            "status": self.status,
            "attempt_id": self.attempt.attempt_id,
            "context": self.attempt.context_summary(),
        }
        if self.ok:
            payload["record"] = self.record.to_dict()
            payload["message"] = self.message
        else:
            payload.update({"error": self.error, "message": self.message, "retry": self.retry})
        return payload


class AttemptRegistry:
    """In-memory pending attempts with a time-to-live."""

    def __init__(self, ttl_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = max(float(ttl_seconds), 0.0)
        self._clock = clock
        self._attempts: Dict[str, CheckInAttempt] = {}
        self._lock = threading.RLock()

    def put(self, attempt: CheckInAttempt) -> CheckInAttempt:
        with self._lock:
            self.purge_expired()
            attempt.touched_at = self._clock()
            self._attempts[attempt.attempt_id] = attempt
        return attempt

    def get(self, attempt_id: str) -> Optional[CheckInAttempt]:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            if attempt is None:
                return None
            if self._clock() - attempt.touched_at > self._ttl:
                self._attempts.pop(attempt_id, None)
                return None
            return attempt

    def discard(self, attempt_id: str) -> Optional[CheckInAttempt]:
        with self._lock:
            return self._attempts.pop(attempt_id, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, a in self._attempts.items() if now - a.touched_at > self._ttl]
            for key in expired:
                self._attempts.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)


class AttemptCancelled(AttendanceError):
    code = "cancelled"
    retry = False
    default_message = "The check-in attempt was cancelled."


class AttendanceValidator:
    """Runs one check-in attempt through embedding, matching and context checks."""

    def __init__(
        self,
        *,
        face_session: Any,
        presences: Any,
        context_validator: Any = None,
        remote_validator: Any = None,
        registry: Optional[AttemptRegistry] = None,
        record_samples: bool = True,
        strict: bool = False,
        location_max_age_seconds: Optional[float] = 60,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session = face_session
        self._presences = presences
        self._context = context_validator
        self._remote = remote_validator
        self._registry = registry or AttemptRegistry()
        self._record_samples = record_samples
        self._strict = strict
        self._max_age = location_max_age_seconds
        self._clock = clock or _utc_now
        self._logger = logger or logging.getLogger(__name__)

    @property
    def registry(self) -> AttemptRegistry:
        return self._registry

    @property
    def strict(self) -> bool:
        return self._strict

    # ------------------------------------------------------------------
    # Check-in
    # ------------------------------------------------------------------
    def begin(self, attempt: CheckInAttempt) -> CheckInAttempt:
        return self._registry.put(attempt)

    def check_in(self, attempt: CheckInAttempt, *, record_sample: Optional[bool] = None) -> CheckInOutcome:
        record_sample = self._record_samples if record_sample is None else record_sample
        self._registry.put(attempt)
        try:
            record = self._run(attempt, record_sample)
        except StoreUnavailable as exc:
            # embedding/match/context are kept so a retry needs no new capture
            attempt.state = AttemptState.CAPTURING
            attempt.last_error = exc.code
            self._logger.error("[Attendance] Store failure for attempt %s: %s", attempt.attempt_id, exc)
            return CheckInOutcome(attempt=attempt, error=exc.code, message=exc.message, retry=exc.retry)
        except AttemptCancelled as exc:
            self._registry.discard(attempt.attempt_id)
            attempt.state = AttemptState.REJECTED
            self._logger.info("[Attendance] Attempt %s cancelled, results discarded", attempt.attempt_id)
            return CheckInOutcome(attempt=attempt, error=exc.code, message=exc.message, retry=exc.retry)
        except AttendanceError as exc:
            return self._reject(attempt, exc)

        attempt.state = AttemptState.RECORDED
        self._registry.discard(attempt.attempt_id)
        self._logger.info(
            "[Attendance] Recorded %s for %s (class %s, recognized=%s)",
            record.status, attempt.identity_id, attempt.class_id, record.recognized,
        )
        return CheckInOutcome(attempt=attempt, record=record, message=record.recognition_note)

    def _reject(self, attempt: CheckInAttempt, exc: AttendanceError) -> CheckInOutcome:
        self._logger.info(
            "[Attendance] Attempt %s for %s rejected at %s: %s",
            attempt.attempt_id, attempt.identity_id, attempt.state.value, exc.message,
        )
        attempt.last_error = exc.code
        attempt.context = None
        # retry in place: identity and class stay on the attempt
        attempt.state = AttemptState.CAPTURING
        return CheckInOutcome(attempt=attempt, error=exc.code, message=exc.message, retry=exc.retry)

    def _ensure_live(self, attempt: CheckInAttempt) -> None:
        if attempt.cancelled:
            raise AttemptCancelled()

    def _run(self, attempt: CheckInAttempt, record_sample: bool) -> AttendanceRecord:
        self._ensure_live(attempt)
        if attempt.embedding is None:
            attempt.state = AttemptState.EMBEDDING
            if attempt.image is None:
                raise InvalidImage("No image was captured.")
            vector = self._session.extract(attempt.image)
            if vector is None:
                raise NoFaceDetected()
            attempt.embedding = [float(v) for v in vector]
            attempt.match = None
        self._ensure_live(attempt)

        if record_sample and not attempt.sample_recorded:
            try:
                self._session.record_sample(
                    attempt.identity_id,
                    attempt.embedding,
                    display_name=attempt.display_name,
                    contact_email=attempt.contact_email,
                )
                attempt.sample_recorded = True
            except AttendanceError as exc:
                self._logger.warning(
                    "[Attendance] Skipping sample write-through for %s: %s", attempt.identity_id, exc
                )

        if attempt.match is None:
            attempt.state = AttemptState.MATCHING
            self._session.rebuild()
            attempt.match = self._session.match(attempt.embedding)
        self._ensure_live(attempt)

        attempt.state = AttemptState.CONTEXT_VALIDATION
        if attempt.context is None:
            attempt.context = self._validate_context(attempt)
        self._ensure_live(attempt)

        record = self._build_record(attempt)
        return self._presences.add(record)

    def _validate_context(self, attempt: CheckInAttempt) -> ContextDecision:
        if attempt.location_error:
            raise LocationUnavailable(attempt.location_error)
        if self._remote is not None:
            return self._remote.validate(
                class_id=attempt.class_id,
                location=attempt.location,
                image_bytes=attempt.image_bytes,
                now=self._clock(),
            )
        if self._context is not None:
            return self._context.validate(
                class_id=attempt.class_id,
                location=attempt.location,
                image=attempt.image,
                now=self._clock(),
            )
        return ContextDecision()

    def _build_record(self, attempt: CheckInAttempt) -> AttendanceRecord:
        now = self._clock()
        result = attempt.match
        recognized = isinstance(result, Match) and result.identity_id == attempt.identity_id
        other_identity = None
        if recognized:
            note = NOTE_CONFIRMED
            distance = result.distance
        elif isinstance(result, Match):
            note = NOTE_OTHER_USER
            other_identity = result.identity_id
            distance = result.distance
        else:
            note = NOTE_NOT_FOUND
            distance = getattr(result, "best_distance", None)

        status = STATUS_PRESENT
        if self._strict and not recognized:
            status = STATUS_DENIED

        context = attempt.context or ContextDecision()
        extra: Dict[str, Any] = {}
        if context.remote_record_id:
            extra["remoteRecordId"] = context.remote_record_id
        return AttendanceRecord(
            identity_id=attempt.identity_id,
            display_name=attempt.display_name,
            contact_email=attempt.contact_email,
            status=status,
            recognized=recognized,
            recognition_note=note,
            matcher_distance=distance,
            recognized_identity_id=other_identity,
            class_id=attempt.class_id,
            check_in_location=attempt.location.point if attempt.location else None,
            check_in_time=now,
            liveness_confidence=context.liveness_confidence,
            location_distance_meters=context.distance_meters,
            attempt_id=attempt.attempt_id,
            timestamp=now,
            extra=extra,
        )

    def cancel(self, attempt_id: str, identity_id: Optional[str] = None) -> bool:
        """Mark a pending attempt cancelled; in-flight work is discarded, not aborted."""
        attempt = self._registry.get(attempt_id)
        if attempt is None:
            return False
        if identity_id is not None and attempt.identity_id != identity_id:
            return False
        attempt.cancelled = True
        self._registry.discard(attempt_id)
        self._logger.info("[Attendance] Attempt %s cancelled by %s", attempt_id, attempt.identity_id)
        return True

    # ------------------------------------------------------------------
    # Check-out
    # ------------------------------------------------------------------
    def check_out(
        self,
        identity_id: str,
        *,
        location: Optional[LocationFix],
        class_id: Optional[str] = None,
        record_id: Optional[str] = None,
        location_error: Optional[str] = None,
    ) -> AttendanceRecord:
        if location_error:
            raise LocationUnavailable(location_error)
        now = self._clock()
        fix = require_fresh_location(location, now, self._max_age)

        if record_id:
            record = self._presences.get(record_id)
            if record is not None and record.identity_id != identity_id:
                record = None
        else:
            record = self._presences.latest_open(identity_id, class_id)
        if record is None or not record.is_open:
            raise NoOpenAttendance()

        closed = self._presences.close(record.record_id, check_out_time=now, location=fix.point)
        if closed is None:
            raise NoOpenAttendance()
        self._logger.info("[Attendance] Checkout success for %s (record %s)", identity_id, record.record_id)
        return closed


__all__ = [
    "AttemptState",
    "CheckInAttempt",
    "CheckInOutcome",
    "AttemptRegistry",
    "AttemptCancelled",
    "AttendanceValidator",
]
