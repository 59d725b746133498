import threading
import time

import numpy as np
import pytest

from core.errors import ModelLoadError
from core.inference.engine import (
    DeepFaceStrategy,
    FaceRecognitionStrategy,
    InferenceEngine,
    InferenceError,
    SingleFlightLoader,
)


class SlowStrategy:
    name = "slow"

    def __init__(self, delay=0.05, vector=(1.0, 0.0)):
        self.delay = delay
        self.vector = vector
        self.loads = 0
        self._lock = threading.Lock()

    def load(self):
        with self._lock:
            self.loads += 1
        time.sleep(self.delay)

    def embed(self, image):
        return None if image is None else np.asarray(self.vector)


class BrokenStrategy:
    def __init__(self, name, message):
        self.name = name
        self.message = message
        self.loads = 0

    def load(self):
        self.loads += 1
        raise RuntimeError(self.message)

    def embed(self, image):  # pragma: no cover - never loaded
        raise AssertionError("not loaded")


def test_concurrent_callers_share_one_load():
    strategy = SlowStrategy()
    engine = InferenceEngine([strategy])
    results = []

    def worker():
        results.append(engine.ensure_loaded())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert strategy.loads == 1
    assert results == [strategy] * 8
    assert engine.loaded


def test_loaded_engine_does_not_reload():
    strategy = SlowStrategy(delay=0)
    engine = InferenceEngine([strategy])
    engine.ensure_loaded()
    engine.ensure_loaded()
    assert strategy.loads == 1


def test_failed_load_names_every_source():
    engine = InferenceEngine([
        BrokenStrategy("face_recognition", "face_recognition_models is not installed"),
        BrokenStrategy("deepface", "No module named 'deepface'"),
    ])
    with pytest.raises(ModelLoadError) as excinfo:
        engine.ensure_loaded()
    error = excinfo.value
    assert set(error.tried) == {"face_recognition", "deepface"}
    assert "face_recognition_models is not installed" in error.message
    assert "deepface" in error.message
    assert not engine.loaded


def test_failed_load_can_be_retried():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise ModelLoadError(tried={"remote": "timeout"})
        return "model"

    loader = SingleFlightLoader(flaky)
    with pytest.raises(ModelLoadError):
        loader.ensure()
    assert loader.ensure() == "model"
    assert loader.ensure() == "model"
    assert len(calls) == 2


def test_waiters_see_the_leader_failure():
    started = threading.Event()
    release = threading.Event()

    def load():
        started.set()
        release.wait(1)
        raise ModelLoadError(tried={"local": "missing weights"})

    loader = SingleFlightLoader(load)
    errors = []

    def call():
        try:
            loader.ensure()
        except ModelLoadError as exc:
            errors.append(exc)

    leader = threading.Thread(target=call)
    leader.start()
    started.wait(1)
    follower = threading.Thread(target=call)
    follower.start()
    time.sleep(0.02)
    release.set()
    leader.join()
    follower.join()

    assert len(errors) == 2
    assert all("missing weights" in e.message for e in errors)


def test_first_loadable_strategy_is_used():
    broken = BrokenStrategy("face_recognition", "dlib missing")
    working = SlowStrategy(delay=0)
    engine = InferenceEngine([broken, working])
    assert engine.ensure_loaded() is working
    assert engine.describe()["active"] == "slow"


def test_extract_returns_flat_float_vector():
    engine = InferenceEngine([SlowStrategy(delay=0, vector=[[1, 2, 3]])])
    vector = engine.extract(np.zeros((4, 4, 3), dtype=np.uint8))
    assert vector.dtype == np.float64
    assert vector.tolist() == [1.0, 2.0, 3.0]


def test_extract_without_face_returns_none():
    class NoFace(SlowStrategy):
        def embed(self, image):
            return None

    engine = InferenceEngine([NoFace(delay=0)])
    assert engine.extract(np.zeros((4, 4, 3), dtype=np.uint8)) is None


def test_backend_processing_error_is_a_detection_failure():
    class Failing(SlowStrategy):
        def embed(self, image):
            raise InferenceError("bad crop")

    engine = InferenceEngine([Failing(delay=0)])
    assert engine.extract(np.zeros((4, 4, 3), dtype=np.uint8)) is None


def test_face_recognition_strategy_delegates_to_service():
    class Service:
        loaded = False

        def load_model(self):
            self.loaded = True

        def get_embedding(self, image):
            return np.ones(128)

    service = Service()
    strategy = FaceRecognitionStrategy(service=service)
    engine = InferenceEngine([strategy])
    vector = engine.extract(np.zeros((2, 2, 3), dtype=np.uint8))
    assert service.loaded
    assert vector.shape == (128,)


class FakeDeepFace:
    def __init__(self, representations=None, error=None):
        self.representations = representations or []
        self.error = error
        self.built = []

    def build_model(self, name):
        self.built.append(name)

    def represent(self, **kwargs):
        if self.error:
            raise self.error
        return self.representations


def test_deepface_strategy_picks_largest_face():
    module = FakeDeepFace([
        {"embedding": [0.0, 1.0], "facial_area": {"x": 0, "y": 0, "w": 10, "h": 10}},
        {"embedding": [1.0, 0.0], "facial_area": {"x": 5, "y": 5, "w": 40, "h": 40}},
    ])
    strategy = DeepFaceStrategy(model_name="Facenet", deepface_module=module)
    strategy.load()
    assert module.built == ["Facenet"]
    assert strategy.embed(np.zeros((2, 2, 3))).tolist() == [1.0, 0.0]


def test_deepface_no_face_is_none():
    strategy = DeepFaceStrategy(deepface_module=FakeDeepFace(error=ValueError("Face could not be detected")))
    strategy.load()
    assert strategy.embed(np.zeros((2, 2, 3))) is None
