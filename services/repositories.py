"""
Repositories over the document store: faces, presences, classes.

Each repository translates between stored documents and the core dataclasses;
all writes go through ``DocumentStore`` so sqlite failures surface as
``StoreUnavailable``.
"""

import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence, Union

from core.attendance.records import (
    CLASSES_COLLECTION,
    PRESENCES_COLLECTION,
    STATUS_COMPLETED,
    AttendanceRecord,
    ClassSession,
    GeoPoint,
    format_timestamp,
)
from core.recognition.profiles import FACES_COLLECTION, IdentityProfile
from core.recognition.templates import TemplateAggregator

logger = logging.getLogger(__name__)


def _profile_from(document) -> IdentityProfile:
    return IdentityProfile.from_document(document, identity_id=document.get("id"))


class FacesRepository:
    def __init__(self, store, aggregator: Optional[TemplateAggregator] = None):
        self.store = store
        self.aggregator = aggregator or TemplateAggregator()

    def list(self) -> List[IdentityProfile]:
        return [_profile_from(doc) for doc in self.store.all(FACES_COLLECTION)]

    def list_active(self) -> List[IdentityProfile]:
        return [_profile_from(doc) for doc in self.store.query(FACES_COLLECTION, active=True)]

    def get(self, identity_id: str) -> Optional[IdentityProfile]:
        document = self.store.get(FACES_COLLECTION, identity_id)
        return _profile_from(document) if document else None

    def upsert(self, incoming: Union[IdentityProfile, Mapping[str, Any]]) -> IdentityProfile:
        """Merge-upsert a full profile and recompute the average."""
        if isinstance(incoming, IdentityProfile):
            identity_id = incoming.identity_id
        else:
            identity_id = incoming.get("identityId")
        if not identity_id:
            raise ValueError("identityId is required")

        def apply(current):
            existing = _profile_from(current) if current else None
            return self.aggregator.merge_profile(incoming, existing).to_document()

        document = self.store.mutate(FACES_COLLECTION, identity_id, apply)
        logger.info("[Faces] Upserted profile %s", identity_id)
        return _profile_from(document)

    def add_embedding(
        self,
        identity_id: str,
        vector: Sequence[float],
        *,
        display_name: str = "",
        contact_email: str = "",
        image_url: Optional[str] = None,
        key: Optional[str] = None,
    ) -> IdentityProfile:
        """Append one sample; creates an inactive profile when none exists.

        The cached average is not recomputed here.
        """
        def apply(current):
            if current:
                profile = _profile_from(current)
            else:
                profile = IdentityProfile(
                    identity_id=identity_id,
                    display_name=display_name,
                    contact_email=contact_email,
                    active=False,
                )
            profile = self.aggregator.add_sample(profile, vector, key=key)
            if not profile.display_name and display_name:
                profile.display_name = display_name
            if not profile.contact_email and contact_email:
                profile.contact_email = contact_email
            if image_url and image_url not in profile.image_urls:
                profile.image_urls.append(image_url)
            return profile.to_document()

        document = self.store.mutate(FACES_COLLECTION, identity_id, apply)
        profile = _profile_from(document)
        logger.info("[Faces] %s now has %d samples", identity_id, profile.sample_count)
        return profile

    def set_active(self, identity_id: str, active: Optional[bool] = None) -> Optional[IdentityProfile]:
        """Set ``active``; ``None`` toggles the current value."""
        def apply(current):
            if current is None:
                return None
            current["active"] = (not current.get("active", False)) if active is None else bool(active)
            return current

        document = self.store.mutate(FACES_COLLECTION, identity_id, apply)
        return _profile_from(document) if document else None

    def delete(self, identity_id: str) -> bool:
        return self.store.delete(FACES_COLLECTION, identity_id)


class PresenceRepository:
    def __init__(self, store):
        self.store = store

    def add(self, record: AttendanceRecord) -> AttendanceRecord:
        document = self.store.add(PRESENCES_COLLECTION, record.to_document())
        return AttendanceRecord.from_document(document)

    def get(self, record_id: str) -> Optional[AttendanceRecord]:
        document = self.store.get(PRESENCES_COLLECTION, record_id)
        return AttendanceRecord.from_document(document) if document else None

    def list(self, identity_id: Optional[str] = None, class_id: Optional[str] = None) -> List[AttendanceRecord]:
        filters = {}
        if identity_id:
            filters["identityId"] = identity_id
        if class_id:
            filters["classId"] = class_id
        records = [AttendanceRecord.from_document(doc) for doc in self.store.query(PRESENCES_COLLECTION, **filters)]
        records.sort(key=lambda r: format_timestamp(r.timestamp) or "", reverse=True)
        return records

    def latest_open(self, identity_id: str, class_id: Optional[str] = None) -> Optional[AttendanceRecord]:
        for record in self.list(identity_id=identity_id, class_id=class_id):
            if record.is_open:
                return record
        return None

    def close(self, record_id: str, *, check_out_time: datetime, location: Optional[GeoPoint]) -> Optional[AttendanceRecord]:
        """Add check-out fields to an open record; check-in fields are never rewritten."""
        closed = []

        def apply(current):
            if current is None or current.get("checkOutTime"):
                return None
            closed.append(record_id)
            current.update(
                {
                    "checkOutTime": format_timestamp(check_out_time),
                    "checkOutLocation": location.to_dict() if location else None,
                    "status": STATUS_COMPLETED,
                }
            )
            return current

        document = self.store.mutate(PRESENCES_COLLECTION, record_id, apply)
        if not closed:
            return None
        return AttendanceRecord.from_document(document)


class ClassRepository:
    def __init__(self, store):
        self.store = store

    def get(self, class_id: str) -> Optional[ClassSession]:
        document = self.store.get(CLASSES_COLLECTION, class_id)
        return ClassSession.from_document(document) if document else None

    def list(self) -> List[ClassSession]:
        return [ClassSession.from_document(doc) for doc in self.store.all(CLASSES_COLLECTION)]

    def save(self, session: ClassSession) -> ClassSession:
        document = self.store.set(CLASSES_COLLECTION, session.class_id, session.to_document())
        return ClassSession.from_document(document)

    def delete(self, class_id: str) -> bool:
        return self.store.delete(CLASSES_COLLECTION, class_id)
