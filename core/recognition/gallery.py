"""Face gallery and nearest-sample matcher.

The gallery is a read-only snapshot of every sample of every active
identity. Matching compares the query embedding with each individual
sample rather than with per-identity centroids, so identities with more
samples get more chances to match.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from core.errors import DimensionMismatch
from core.recognition.profiles import IdentityProfile

UNKNOWN_LABEL = "unknown"
DEFAULT_MATCH_THRESHOLD = 0.6

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    identity_id: str
    distance: float

    matched = True


@dataclass(frozen=True)
class NoMatch:
    best_distance: Optional[float] = None
    best_label: Optional[str] = None

    matched = False


MatchResult = Union[Match, NoMatch]


class FaceGallery:
    """Immutable labelled sample index built from identity profiles."""

    def __init__(self, labels: Sequence[str], matrix: Optional[np.ndarray], identity_count: int = 0) -> None:
        self._labels: Tuple[str, ...] = tuple(labels)
        if matrix is None or not self._labels:
            matrix = np.empty((0, 0), dtype=np.float64)
        else:
            matrix = np.array(matrix, dtype=np.float64, copy=True)
        matrix.setflags(write=False)
        self._matrix = matrix
        self._identity_count = identity_count
        self._built_at = datetime.now(timezone.utc)

    @classmethod
    def empty(cls) -> "FaceGallery":
        return cls((), None)

    @classmethod
    def build(cls, profiles: Iterable[IdentityProfile]) -> "FaceGallery":
        """Snapshot the samples of every active profile.

        All gallery rows share one length: the most common one across the
        usable profiles. Profiles of any other length, or whose own samples
        disagree, are skipped with a warning instead of failing the build.
        """
        candidates = []
        for profile in profiles:
            if not profile.active or not profile.samples:
                continue
            pairs = profile.labelled_samples()
            lengths = {len(vector) for _, vector in pairs}
            if len(lengths) != 1:
                logger.warning(
                    "[Gallery] Skipping %s: samples have mixed lengths %s",
                    profile.identity_id, sorted(lengths),
                )
                continue
            candidates.append((profile.identity_id, lengths.pop(), pairs))
        if not candidates:
            return cls.empty()

        counts = Counter()
        for _, length, pairs in candidates:
            counts[length] += len(pairs)
        dimension = counts.most_common(1)[0][0]
        labels = []
        vectors = []
        identities = set()
        for identity_id, length, pairs in candidates:
            if length != dimension:
                logger.warning(
                    "[Gallery] Skipping %s: vector length %d, gallery uses %d",
                    identity_id, length, dimension,
                )
                continue
            for label, vector in pairs:
                labels.append(label)
                vectors.append(vector)
            identities.add(identity_id)
        gallery = cls(labels, np.asarray(vectors, dtype=np.float64), identity_count=len(identities))
        logger.info(
            "[Gallery] Built gallery: %d samples, %d identities", len(labels), len(identities)
        )
        return gallery

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @property
    def dimension(self) -> Optional[int]:
        return int(self._matrix.shape[1]) if len(self) else None

    def __len__(self) -> int:
        return len(self._labels)

    def is_empty(self) -> bool:
        return len(self) == 0

    def distances(self, query: Sequence[float]) -> np.ndarray:
        vec = np.asarray(query, dtype=np.float64).ravel()
        if self.is_empty():
            return np.empty(0, dtype=np.float64)
        if vec.shape[0] != self._matrix.shape[1]:
            raise DimensionMismatch(lengths={int(vec.shape[0]), int(self._matrix.shape[1])})
        return np.linalg.norm(self._matrix - vec, axis=1)

    def describe(self) -> Dict[str, Any]:
        return {
            "samples": len(self),
            "identities": self._identity_count,
            "dimension": self.dimension,
            "built_at": self._built_at.isoformat(),
        }


def match(query: Sequence[float], gallery: FaceGallery, threshold: float = DEFAULT_MATCH_THRESHOLD) -> MatchResult:
    """Classify ``query`` by its nearest gallery sample.

    Accepts iff the global minimum distance is ``<= threshold``.
    """
    if gallery.is_empty():
        return NoMatch()
    length = np.ravel(query).shape[0]
    if length != gallery.dimension:
        logger.warning("[Gallery] Query length %d does not match gallery dimension %d", length, gallery.dimension)
        return NoMatch()
    distances = gallery.distances(query)
    best_idx = int(np.argmin(distances))
    best_distance = float(distances[best_idx])
    best_label = gallery.labels[best_idx]
    if best_label == UNKNOWN_LABEL or best_distance > threshold:
        logger.debug(
            "[Gallery] No match: best %s at %.4f (threshold %.3f)", best_label, best_distance, threshold
        )
        return NoMatch(best_distance=best_distance, best_label=best_label)
    logger.debug("[Gallery] Match %s at %.4f", best_label, best_distance)
    return Match(identity_id=best_label, distance=best_distance)


class Matcher:
    """Binds a threshold to ``match`` so callers do not pass it around."""

    def __init__(self, threshold: float = DEFAULT_MATCH_THRESHOLD) -> None:
        if threshold < 0:
            raise ValueError("threshold must be >= 0")
        self.threshold = float(threshold)

    def match(self, query: Sequence[float], gallery: FaceGallery) -> MatchResult:
        return match(query, gallery, self.threshold)


__all__ = [
    "FaceGallery",
    "Match",
    "NoMatch",
    "MatchResult",
    "Matcher",
    "match",
    "UNKNOWN_LABEL",
    "DEFAULT_MATCH_THRESHOLD",
]
