import io
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest
from PIL import Image

from app import create_app
from core.recognition.session import FaceSession
from database import DocumentStore
from services.identity_service import IdentityClaims
from services.repositories import ClassRepository, FacesRepository, PresenceRepository

ADMIN_EMAIL = 'admin@example.com'


def png_bytes(color, size=(16, 16)):
    """Solid-colour PNG; the colour is the key the fake engine maps to a vector."""
    buffer = io.BytesIO()
    Image.new('RGB', size, color).save(buffer, format='PNG')
    return buffer.getvalue()


class FakeEngine:
    """Maps the top-left pixel colour of an image to a registered vector."""

    def __init__(self):
        self.vectors = {}
        self.load_calls = 0
        self.loaded = False

    def register(self, color, vector):
        self.vectors[tuple(color)] = np.asarray(vector, dtype=np.float64)

    def ensure_loaded(self):
        self.load_calls += 1
        self.loaded = True
        return self

    def extract(self, image):
        self.ensure_loaded()
        key = tuple(int(v) for v in image[0, 0][:3])
        return self.vectors.get(key)

    def describe(self):
        return {'strategies': ['fake'], 'loaded': self.loaded, 'active': 'fake'}


class FakeIdentityClient:
    def __init__(self):
        self.tokens = {}

    def add(self, token, subject_id, email, name=''):
        self.tokens[token] = IdentityClaims(subject_id=subject_id, display_name=name, email=email)

    def fetch_claims(self, access_token):
        from core.errors import IdentityError

        if access_token not in self.tokens:
            raise IdentityError('The identity provider rejected the token (HTTP 401).')
        return self.tokens[access_token]


@pytest.fixture
def store(tmp_path):
    return DocumentStore(tmp_path / 'store.db')


@pytest.fixture
def faces(store):
    return FacesRepository(store)


@pytest.fixture
def presences(store):
    return PresenceRepository(store)


@pytest.fixture
def classes(store):
    return ClassRepository(store)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def face_session(fake_engine, faces):
    return FaceSession(engine=fake_engine, faces=faces)


@pytest.fixture
def now():
    return datetime(2024, 3, 4, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def identity_client():
    return FakeIdentityClient()


@pytest.fixture
def app(tmp_path, fake_engine, identity_client):
    app = create_app(
        {
            'TESTING': True,
            'SECRET_KEY': 'test-secret',
            'DATABASE_PATH': str(tmp_path / 'app.db'),
            'FACE_IMAGE_DIR': str(tmp_path / 'faces'),
            'ADMIN_EMAILS': [ADMIN_EMAIL],
            'ANTIFRAUD_BACKEND_URL': '',
            'LIVENESS_CHECK': False,
            'STRICT_FACE_MATCH': False,
            'RECORD_ATTEMPT_SAMPLES': True,
        },
        face_engine=fake_engine,
        identity_client=identity_client,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, subject_id, email, name=''):
    with client.session_transaction() as sess:
        sess['identity'] = {
            'subjectId': subject_id,
            'displayName': name or subject_id,
            'email': email,
            'pictureUrl': None,
        }


@pytest.fixture
def as_admin(client):
    login(client, 'admin-1', ADMIN_EMAIL, 'Admin')
    return client


def class_payload(class_id='c1', *, lat=-23.5505, lng=-46.6333, radius=30, start_offset=-30, end_offset=60):
    start = datetime.now(timezone.utc) + timedelta(minutes=start_offset)
    end = datetime.now(timezone.utc) + timedelta(minutes=end_offset)
    return {
        'id': class_id,
        'courseName': 'Algorithms',
        'room': 'B-204',
        'teacherName': 'Prof. Lima',
        'startTime': start.isoformat(),
        'endTime': end.isoformat(),
        'isActive': True,
        'allowedLocation': {'lat': lat, 'lng': lng, 'radiusMeters': radius},
    }
