"""Identity profile model as stored in the ``faces`` collection."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.recognition.templates import Sample, Vector, normalize_embeddings

FACES_COLLECTION = "faces"


@dataclass
class IdentityProfile:
    identity_id: str
    display_name: str = ""
    contact_email: str = ""
    active: bool = False
    samples: List[Sample] = field(default_factory=list)
    embedding_average: Optional[Vector] = None
    embedding_average_count: Optional[int] = None
    image_urls: List[str] = field(default_factory=list)
    picture_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_document(cls, document: Mapping[str, Any], identity_id: Optional[str] = None) -> "IdentityProfile":
        # userId/email are the field names of records written by the first web client
        resolved_id = identity_id or document.get("identityId") or document.get("userId") or document.get("id")
        if not resolved_id:
            raise ValueError("Face document has no identity id")
        average = document.get("embeddingAverage")
        return cls(
            identity_id=str(resolved_id),
            display_name=document.get("displayName") or "",
            contact_email=document.get("contactEmail") or document.get("email") or "",
            active=bool(document.get("active", False)),
            samples=normalize_embeddings(document.get("embeddings")),
            embedding_average=[float(v) for v in average] if average else None,
            embedding_average_count=document.get("embeddingAverageCount"),
            image_urls=list(document.get("imageUrls") or []),
            picture_url=document.get("pictureUrl"),
            created_at=document.get("createdAt"),
            updated_at=document.get("updatedAt"),
        )

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "identityId": self.identity_id,
            "displayName": self.display_name,
            "contactEmail": self.contact_email,
            "active": self.active,
            "embeddings": {key: list(vector) for key, vector in self.samples},
            "embeddingAverage": list(self.embedding_average) if self.embedding_average else None,
            "embeddingAverageCount": self.embedding_average_count,
            "imageUrls": list(self.image_urls),
            "pictureUrl": self.picture_url,
        }
        if self.created_at:
            document["createdAt"] = self.created_at
        return document

    def vectors(self) -> List[Vector]:
        return [vector for _, vector in self.samples]

    def labelled_samples(self) -> List[Tuple[str, Vector]]:
        """One ``(identity_id, vector)`` pair per stored sample."""
        return [(self.identity_id, vector) for _, vector in self.samples]

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    def average_is_current(self) -> bool:
        if self.embedding_average is None:
            return not self.samples
        return self.embedding_average_count == len(self.samples)

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly view without raw vectors."""
        return {
            "identityId": self.identity_id,
            "displayName": self.display_name,
            "contactEmail": self.contact_email,
            "active": self.active,
            "sampleCount": self.sample_count,
            "sampleKeys": [key for key, _ in self.samples],
            "averageCurrent": self.average_is_current(),
            "imageUrls": list(self.image_urls),
            "pictureUrl": self.picture_url,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
