"""Embedding extraction engine.

Wraps the face-embedding backends behind one ``extract`` call and owns the
one-time model load. Loading is single-flight: the first caller loads, every
concurrent caller waits for that same load, and a failed load can be retried
by a later call.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from core.errors import ModelLoadError


class InferenceError(RuntimeError):
    """Raised when a backend cannot process an image."""


class SingleFlightLoader:
    """Lazy initializer that runs ``load_fn`` at most once concurrently."""

    def __init__(self, load_fn: Callable[[], Any]) -> None:
        self._load_fn = load_fn
        self._lock = threading.Lock()
        self._inflight: Optional[threading.Event] = None
        self._loaded = False
        self._result: Any = None
        self._error: Optional[BaseException] = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    def ensure(self) -> Any:
        if self._loaded:
            return self._result
        with self._lock:
            if self._loaded:
                return self._result
            event = self._inflight
            leader = event is None
            if leader:
                event = self._inflight = threading.Event()

        if not leader:
            event.wait()
            with self._lock:
                if self._loaded:
                    return self._result
                error = self._error
            raise error if error is not None else ModelLoadError()

        try:
            result = self._load_fn()
        except BaseException as exc:
            with self._lock:
                self._error = exc
                self._inflight = None
            event.set()
            raise
        with self._lock:
            self._result = result
            self._loaded = True
            self._error = None
            self._inflight = None
        event.set()
        return result


class EmbeddingStrategy:
    """Protocol-ish base class for duck-typed embedding backends."""

    name: str = "strategy"

    def load(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def embed(self, image: np.ndarray) -> Optional[np.ndarray]:  # pragma: no cover - interface
        raise NotImplementedError


class FaceRecognitionStrategy(EmbeddingStrategy):
    """dlib ResNet embeddings (128-d) through ``services.face_service``."""

    name = "face_recognition"

    def __init__(self, *, service: Any, logger: Optional[logging.Logger] = None) -> None:
        self._service = service
        self._logger = logger or logging.getLogger(__name__)

    def load(self) -> None:
        if self._service is None:
            raise InferenceError("face_recognition service missing")
        self._service.load_model()

    def embed(self, image: np.ndarray) -> Optional[np.ndarray]:
        return self._service.get_embedding(image)


class DeepFaceStrategy(EmbeddingStrategy):
    name = "deepface"

    def __init__(
        self,
        *,
        model_name: str = "Facenet",
        detector_backend: str = "opencv",
        deepface_module: Any = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._model_name = model_name
        self._detector_backend = detector_backend
        self._deepface = deepface_module
        self._logger = logger or logging.getLogger(__name__)

    def load(self) -> None:
        if self._deepface is None:
            from deepface import DeepFace

            self._deepface = DeepFace
        self._deepface.build_model(self._model_name)
        self._logger.info("[Inference] DeepFace model %s ready", self._model_name)

    def embed(self, image: np.ndarray) -> Optional[np.ndarray]:
        try:
            representations = self._deepface.represent(
                img_path=image,
                model_name=self._model_name,
                detector_backend=self._detector_backend,
                enforce_detection=True,
            )
        except ValueError:
            # DeepFace signals "face could not be detected" with ValueError
            return None
        except Exception as exc:  # pragma: no cover - DeepFace errors runtime dependent
            raise InferenceError(f"DeepFace failed to create embedding: {exc}") from exc
        if not representations:
            return None
        best = max(
            representations,
            key=lambda rep: (rep.get("facial_area") or {}).get("w", 0) * (rep.get("facial_area") or {}).get("h", 0),
        )
        return np.asarray(best["embedding"], dtype=np.float64)


class InferenceEngine:
    """Picks the first backend that loads and extracts single-face embeddings."""

    def __init__(
        self,
        strategies: Sequence[EmbeddingStrategy] = (),
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._strategies: List[EmbeddingStrategy] = [s for s in strategies if s is not None]
        self._active: Optional[EmbeddingStrategy] = None
        self._loader = SingleFlightLoader(self._load_first_available)

    def add_strategy(self, strategy: Optional[EmbeddingStrategy]) -> None:
        if strategy is None:
            return
        self._logger.info("[Inference] Added strategy %s", strategy.name)
        self._strategies.append(strategy)

    def has_strategies(self) -> bool:
        return bool(self._strategies)

    @property
    def loaded(self) -> bool:
        return self._loader.loaded

    def _load_first_available(self) -> EmbeddingStrategy:
        tried: Dict[str, str] = {}
        for strategy in self._strategies:
            try:
                strategy.load()
            except Exception as exc:
                tried[strategy.name] = str(exc) or exc.__class__.__name__
                self._logger.warning("[Inference] Strategy %s failed to load: %s", strategy.name, exc)
                continue
            self._active = strategy
            self._logger.info("[Inference] Using strategy %s", strategy.name)
            return strategy
        error = ModelLoadError(tried=tried)
        self._logger.error("[Inference] %s", error.message)
        raise error

    def ensure_loaded(self) -> EmbeddingStrategy:
        return self._loader.ensure()

    def extract(self, image: np.ndarray) -> Optional[np.ndarray]:
        """Embedding of the most prominent face, or ``None`` when there is none."""
        strategy = self.ensure_loaded()
        try:
            embedding = strategy.embed(image)
        except InferenceError as exc:
            self._logger.warning("[Inference] %s could not embed image: %s", strategy.name, exc)
            return None
        if embedding is None:
            return None
        return np.asarray(embedding, dtype=np.float64).ravel()

    def describe(self) -> Dict[str, Any]:
        return {
            "strategies": [s.name for s in self._strategies],
            "loaded": self.loaded,
            "active": self._active.name if self._active else None,
        }


__all__ = [
    "InferenceEngine",
    "InferenceError",
    "SingleFlightLoader",
    "EmbeddingStrategy",
    "FaceRecognitionStrategy",
    "DeepFaceStrategy",
]
