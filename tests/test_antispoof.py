import numpy as np
import pytest
import requests

from core.attendance.records import GeoPoint
from services.antispoof_service import QualityLivenessCheck, RemoteAntiFraudOracle


def checkerboard(low, high, size=32):
    pattern = np.indices((size, size)).sum(axis=0) % 2
    gray = np.where(pattern == 1, high, low).astype(np.uint8)
    return np.stack([gray] * 3, axis=-1)


def test_uniform_image_is_too_blurry():
    result = QualityLivenessCheck().evaluate(np.full((32, 32, 3), 128, dtype=np.uint8))
    assert not result.passed
    assert 'blurry' in result.reason
    assert result.confidence == 0.0


def test_sharp_well_exposed_image_passes():
    result = QualityLivenessCheck().evaluate(checkerboard(0, 255))
    assert result.passed
    assert result.confidence == 1.0
    assert result.metrics['brightness'] == pytest.approx(127.5)


@pytest.mark.parametrize('low, high, reason', [(0, 60, 'too dark'), (200, 255, 'too bright')])
def test_exposure_limits(low, high, reason):
    result = QualityLivenessCheck().evaluate(checkerboard(low, high))
    assert not result.passed
    assert reason in result.reason


@pytest.mark.parametrize('faces, reason', [(0, 'No face'), (2, 'Multiple faces')])
def test_face_count_rule(faces, reason):
    check = QualityLivenessCheck(face_counter=lambda image: faces)
    result = check.evaluate(checkerboard(0, 255))
    assert not result.passed
    assert reason in result.reason


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body

    def json(self):
        if self.body is None:
            raise ValueError('no json')
        return self.body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_oracle_success_verdict():
    session = FakeSession(FakeResponse(body={
        'success': True,
        'data': {'recordId': 'r1', 'timestamp': '2024-03-04T09:30:00Z', 'distance': '12.5'},
    }))
    oracle = RemoteAntiFraudOracle('http://antifraud.local/', session=session)

    verdict = oracle.check_in(class_id='c1', location=GeoPoint(1.0, 2.0), image_bytes=b'jpg')

    assert verdict.success
    assert verdict.record_id == 'r1'
    assert verdict.distance == 12.5
    url, kwargs = session.calls[0]
    assert url == 'http://antifraud.local/attendance/check-in'
    assert kwargs['data'] == {'classId': 'c1', 'lat': 1.0, 'lng': 2.0}
    assert kwargs['files']['image'][1] == b'jpg'


def test_oracle_rejection_carries_backend_error():
    session = FakeSession(FakeResponse(400, {'success': False, 'error': 'Fora da sala (80m)'}))
    verdict = RemoteAntiFraudOracle('http://x', session=session).check_in(
        class_id='c1', location=GeoPoint(0, 0), image_bytes=b''
    )
    assert not verdict.success
    assert verdict.error == 'Fora da sala (80m)'


def test_oracle_network_failure_is_a_failed_verdict():
    session = FakeSession(error=requests.ConnectionError('refused'))
    verdict = RemoteAntiFraudOracle('http://x', session=session).check_in(
        class_id='c1', location=GeoPoint(0, 0), image_bytes=b''
    )
    assert not verdict.success
    assert 'unreachable' in verdict.error


def test_oracle_invalid_json_is_a_failed_verdict():
    session = FakeSession(FakeResponse(502, None))
    verdict = RemoteAntiFraudOracle('http://x', session=session).check_in(
        class_id=None, location=GeoPoint(0, 0), image_bytes=None
    )
    assert not verdict.success
    assert '502' in verdict.error
