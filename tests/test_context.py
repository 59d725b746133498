from datetime import datetime, timedelta, timezone

import pytest

from core.attendance.context import (
    CLOCK_SKEW_SECONDS,
    LocalContextValidator,
    RemoteContextValidator,
    geodesic_distance_m,
    require_fresh_location,
)
from core.attendance.records import ClassSession, GeoPoint, Geofence, LocationFix
from core.errors import ContextRejected, LocationUnavailable
from services.antispoof_service import AntiFraudVerdict, LivenessResult

NOW = datetime(2024, 3, 4, 9, 30, tzinfo=timezone.utc)
CLASS_POINT = GeoPoint(-23.5505, -46.6333)


class StubClasses:
    def __init__(self, *sessions):
        self.sessions = {s.class_id: s for s in sessions}

    def get(self, class_id):
        return self.sessions.get(class_id)


def make_class(class_id='c1', *, active=True, radius=30.0, start=None, end=None):
    return ClassSession(
        class_id=class_id,
        course_name='Algorithms',
        start_time=start or NOW - timedelta(minutes=30),
        end_time=end or NOW + timedelta(minutes=60),
        is_active=active,
        allowed_location=Geofence(CLASS_POINT, radius),
    )


def fix(timestamp=NOW, point=CLASS_POINT):
    return LocationFix(point=point, accuracy=5.0, timestamp=timestamp)


def validator(*sessions, distance=0.0, **kwargs):
    return LocalContextValidator(
        classes=StubClasses(*sessions),
        distance_fn=lambda a, b: distance,
        **kwargs,
    )


def test_geodesic_distance_one_degree_latitude():
    distance = geodesic_distance_m(GeoPoint(0.0, 0.0), GeoPoint(1.0, 0.0))
    assert distance == pytest.approx(110574, rel=1e-3)


def test_inside_radius_passes_and_reports_distance():
    decision = validator(make_class(), distance=12.345).validate(class_id='c1', location=fix(), now=NOW)
    assert decision.distance_meters == 12.35


def test_outside_radius_is_rejected_with_distance():
    with pytest.raises(ContextRejected) as excinfo:
        validator(make_class(radius=30), distance=45.0).validate(class_id='c1', location=fix(), now=NOW)
    assert '45m' in excinfo.value.message
    assert excinfo.value.details['distance_meters'] == 45.0


def test_grace_period_before_start():
    session = make_class(start=NOW + timedelta(minutes=10))
    validator(session).validate(class_id='c1', location=fix(), now=NOW)

    late_session = make_class(start=NOW + timedelta(minutes=20))
    with pytest.raises(ContextRejected):
        validator(late_session).validate(class_id='c1', location=fix(), now=NOW)


def test_after_end_plus_grace_is_rejected():
    session = make_class(start=NOW - timedelta(hours=2), end=NOW - timedelta(minutes=16))
    with pytest.raises(ContextRejected):
        validator(session).validate(class_id='c1', location=fix(), now=NOW)


def test_unknown_and_inactive_classes_are_rejected():
    with pytest.raises(ContextRejected):
        validator().validate(class_id='missing', location=fix(), now=NOW)
    with pytest.raises(ContextRejected):
        validator(make_class(active=False)).validate(class_id='c1', location=fix(), now=NOW)


def test_class_check_requires_location():
    with pytest.raises(LocationUnavailable) as excinfo:
        validator(make_class()).validate(class_id='c1', location=None, now=NOW)
    assert excinfo.value.reason == 'unavailable'


def test_stale_location_is_rejected():
    with pytest.raises(LocationUnavailable) as excinfo:
        require_fresh_location(fix(timestamp=NOW - timedelta(minutes=5)), NOW, 60)
    assert excinfo.value.reason == 'stale'


def test_location_error_codes_map_to_reasons():
    with pytest.raises(LocationUnavailable) as excinfo:
        LocationFix.from_payload({'locationError': '1'})
    assert excinfo.value.reason == 'denied'
    with pytest.raises(LocationUnavailable) as excinfo:
        LocationFix.from_payload({'locationError': 'timeout'})
    assert excinfo.value.reason == 'timeout'
    assert 'Timed out' in excinfo.value.message


def test_location_payload_parsing():
    parsed = LocationFix.from_payload(
        {'lat': '-23.5', 'lng': '-46.6', 'accuracy': '12', 'locationTimestamp': 1709544600000}
    )
    assert parsed.point == GeoPoint(-23.5, -46.6)
    assert parsed.accuracy == 12.0
    assert parsed.timestamp == datetime(2024, 3, 4, 9, 30, tzinfo=timezone.utc)
    assert LocationFix.from_payload({}) is None
    with pytest.raises(LocationUnavailable):
        LocationFix.from_payload({'lat': 123, 'lng': 0})


class StubLiveness:
    def __init__(self, result):
        self.result = result

    def evaluate(self, image):
        return self.result


def test_liveness_failure_reason_is_surfaced():
    liveness = StubLiveness(LivenessResult(False, 0.1, 'The photo is too blurry. Hold still and try again.'))
    with pytest.raises(ContextRejected) as excinfo:
        validator(make_class(), liveness=liveness).validate(
            class_id='c1', location=fix(), image=object(), now=NOW
        )
    assert 'blurry' in excinfo.value.message


def test_liveness_confidence_is_recorded():
    liveness = StubLiveness(LivenessResult(True, 0.9))
    decision = validator(liveness=liveness).validate(class_id=None, location=None, image=object(), now=NOW)
    assert decision.liveness_confidence == 0.9


class StubOracle:
    def __init__(self, verdict):
        self.verdict = verdict
        self.calls = []

    def check_in(self, **kwargs):
        self.calls.append(kwargs)
        return self.verdict


def test_remote_validator_success():
    oracle = StubOracle(AntiFraudVerdict(True, record_id='r-9', timestamp='t', distance=8.0))
    decision = RemoteContextValidator(oracle).validate(
        class_id='c1', location=fix(), image_bytes=b'jpg', now=NOW
    )
    assert decision.remote_record_id == 'r-9'
    assert decision.distance_meters == 8.0
    assert oracle.calls[0]['location'] == CLASS_POINT


def test_remote_validator_rejection_message():
    oracle = StubOracle(AntiFraudVerdict(False, error='Você está a 120m da sala'))
    with pytest.raises(ContextRejected) as excinfo:
        RemoteContextValidator(oracle).validate(
            class_id='c1', location=fix(), image_bytes=b'jpg', now=NOW
        )
    assert '120m' in excinfo.value.message


def test_remote_validator_rejects_stale_fix_without_calling_backend():
    oracle = StubOracle(AntiFraudVerdict(True, record_id='r-1'))
    old_fix = fix(timestamp=datetime(2020, 1, 1, tzinfo=timezone.utc))
    with pytest.raises(LocationUnavailable) as excinfo:
        RemoteContextValidator(oracle, location_max_age_seconds=60).validate(
            class_id='c1', location=old_fix, image_bytes=b'jpg', now=NOW
        )
    assert excinfo.value.reason == 'stale'
    assert oracle.calls == []


def test_undated_location_is_stale():
    undated = LocationFix.from_payload({'lat': CLASS_POINT.lat, 'lng': CLASS_POINT.lng})
    with pytest.raises(LocationUnavailable) as excinfo:
        validator(make_class()).validate(class_id='c1', location=undated, now=NOW)
    assert excinfo.value.reason == 'stale'


def test_future_dated_location_beyond_clock_skew_is_stale():
    with pytest.raises(LocationUnavailable) as excinfo:
        require_fresh_location(fix(timestamp=NOW + timedelta(minutes=5)), NOW, 60)
    assert excinfo.value.reason == 'stale'
    slightly_ahead = fix(timestamp=NOW + timedelta(seconds=CLOCK_SKEW_SECONDS - 1))
    assert require_fresh_location(slightly_ahead, NOW, 60) is slightly_ahead


def test_undated_location_is_accepted_without_max_age():
    undated = fix(timestamp=None)
    assert require_fresh_location(undated, NOW, None) is undated
