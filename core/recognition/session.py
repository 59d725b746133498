"""Face session: the loaded embedding model plus the current gallery.

One instance is created per application and passed to whoever needs to embed
or match; there is no module-level model or gallery state.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Sequence

import numpy as np

from core.errors import DimensionMismatch, StoreUnavailable
from core.recognition.gallery import FaceGallery, Matcher, MatchResult
from core.recognition.profiles import IdentityProfile


class FaceSession:
    def __init__(
        self,
        *,
        engine: Any,
        faces: Any,
        matcher: Optional[Matcher] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._engine = engine
        self._faces = faces
        self._matcher = matcher or Matcher()
        self._logger = logger or logging.getLogger(__name__)
        self._gallery = FaceGallery.empty()
        self._gallery_lock = threading.Lock()
        self._rebuilds = 0

    @property
    def threshold(self) -> float:
        return self._matcher.threshold

    @property
    def gallery(self) -> FaceGallery:
        with self._gallery_lock:
            return self._gallery

    def ensure_loaded(self) -> None:
        self._engine.ensure_loaded()

    def extract(self, image: np.ndarray) -> Optional[np.ndarray]:
        return self._engine.extract(image)

    def rebuild(self) -> FaceGallery:
        """Rebuild from the active profiles; on failure keep the last gallery."""
        try:
            gallery = FaceGallery.build(self._faces.list_active())
        except (StoreUnavailable, DimensionMismatch) as exc:
            self._logger.warning("[Gallery] Rebuild failed, keeping previous gallery: %s", exc)
            return self.gallery
        with self._gallery_lock:
            self._gallery = gallery
            self._rebuilds += 1
        return gallery

    def match(self, query: Sequence[float]) -> MatchResult:
        return self._matcher.match(query, self.gallery)

    def record_sample(
        self,
        identity_id: str,
        vector: Sequence[float],
        *,
        display_name: str = "",
        contact_email: str = "",
    ) -> IdentityProfile:
        """Write-through one sample for ``identity_id`` (inactive profile if new)."""
        return self._faces.add_embedding(
            identity_id,
            vector,
            display_name=display_name,
            contact_email=contact_email,
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "model": self._engine.describe(),
            "gallery": self.gallery.describe(),
            "threshold": self.threshold,
            "rebuilds": self._rebuilds,
        }
