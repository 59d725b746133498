"""Template aggregation: per-identity sample sets and their cached mean.

Stored documents may hold face samples either as an ordered list of vectors
(older records) or as a mapping of sample key -> vector. ``normalize_embeddings``
is the only place that knows about both shapes; everything downstream works
on an ordered list of ``(key, vector)`` pairs.
"""
from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from core.errors import DimensionMismatch

if TYPE_CHECKING:  # pragma: no cover
    from core.recognition.profiles import IdentityProfile

Vector = List[float]
Sample = Tuple[str, Vector]

logger = logging.getLogger(__name__)


def as_vector(value: Any) -> Vector:
    """Coerce one stored/embedded vector into a flat list of floats."""
    try:
        flat = np.asarray(value, dtype=np.float64).ravel()
    except (TypeError, ValueError) as exc:
        raise DimensionMismatch(f"Face sample is not a numeric vector: {exc}") from exc
    if flat.size == 0:
        raise DimensionMismatch("Face sample is empty")
    return [float(v) for v in flat]


def normalize_embeddings(raw: Any) -> List[Sample]:
    """Convert any stored embedding representation to ordered ``(key, vector)`` pairs.

    Lists (and 2-D arrays) get index-string keys ``"0", "1", ...``; mappings
    keep their keys in insertion order.
    """
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        items = [(str(key), value) for key, value in raw.items()]
    elif isinstance(raw, np.ndarray):
        rows = raw if raw.ndim > 1 else raw.reshape(1, -1)
        items = [(str(idx), row) for idx, row in enumerate(rows)]
    elif isinstance(raw, (list, tuple)):
        items = [(str(idx), value) for idx, value in enumerate(raw)]
    else:
        raise DimensionMismatch(f"Unsupported embeddings representation: {type(raw).__name__}")
    return [(key, as_vector(value)) for key, value in items]


def check_dimensions(vectors: Iterable[Sequence[float]]) -> Optional[int]:
    """Return the shared vector length, or raise ``DimensionMismatch``."""
    lengths = {len(vec) for vec in vectors}
    if not lengths:
        return None
    if len(lengths) > 1:
        raise DimensionMismatch(lengths=lengths)
    return lengths.pop()


def mean_vector(vectors: Sequence[Sequence[float]]) -> Optional[Vector]:
    """Element-wise mean; ``None`` for zero samples (never a zero vector)."""
    if not vectors:
        return None
    check_dimensions(vectors)
    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0).tolist()


class TemplateAggregator:
    """Merges new samples into identity profiles and keeps the mean consistent."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time

    def next_key(self, existing: Iterable[str]) -> str:
        taken = set(existing)
        key = int(self._clock() * 1000)
        while str(key) in taken:
            key += 1
        return str(key)

    def add_sample(
        self,
        profile: "IdentityProfile",
        vector: Sequence[float],
        key: Optional[str] = None,
    ) -> "IdentityProfile":
        """Append one keyed sample. The cached average is left as-is (stale)."""
        vec = as_vector(vector)
        check_dimensions([vec, *profile.vectors()])
        existing_keys = [k for k, _ in profile.samples]
        if key is None or key in existing_keys:
            key = self.next_key(existing_keys)
        logger.debug("[Templates] %s: +sample %s (%d total)", profile.identity_id, key, len(existing_keys) + 1)
        return replace(profile, samples=[*profile.samples, (key, vec)])

    def recompute_average(self, profile: "IdentityProfile") -> "IdentityProfile":
        vectors = profile.vectors()
        average = mean_vector(vectors)
        return replace(
            profile,
            embedding_average=average,
            embedding_average_count=len(vectors) if average is not None else None,
        )

    def merge_profile(
        self,
        incoming: Union["IdentityProfile", Mapping[str, Any]],
        existing: Optional["IdentityProfile"] = None,
    ) -> "IdentityProfile":
        """Full upsert with merge semantics, then recompute the average.

        Fields present in ``incoming`` override ``existing``; sample mappings
        are merged key by key. Raises ``DimensionMismatch`` before producing
        anything when the merged samples disagree on length, so a caller that
        only persists the return value leaves the stored record untouched.
        """
        from core.recognition.profiles import IdentityProfile

        document = incoming.to_document() if isinstance(incoming, IdentityProfile) else dict(incoming)
        identity_id = document.get("identityId") or (existing.identity_id if existing else None)
        if not identity_id:
            raise ValueError("identityId is required")

        if existing is None:
            merged = IdentityProfile.from_document(document, identity_id=identity_id)
        else:
            base = existing.to_document()
            base.update({k: v for k, v in document.items() if k not in ("embeddings", "imageUrls", "createdAt")})
            # imageUrls is append-only
            base["imageUrls"] = existing.image_urls + [
                url for url in document.get("imageUrls") or [] if url not in existing.image_urls
            ]
            merged = IdentityProfile.from_document(base, identity_id=identity_id)
            if "embeddings" in document:
                samples = dict(existing.samples)
                samples.update(normalize_embeddings(document.get("embeddings")))
                merged = replace(merged, samples=list(samples.items()))
        return self.recompute_average(merged)


__all__ = [
    "TemplateAggregator",
    "normalize_embeddings",
    "check_dimensions",
    "mean_vector",
    "as_vector",
]
