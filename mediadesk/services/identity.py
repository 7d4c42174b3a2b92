"""Identity registry - persons and the faces attached to them.

Every face belongs to exactly one person. Moving a face between persons is
remove-then-add, never an implicit transfer. Mutations are serialized on
one lock per registry and callers only ever see immutable snapshots.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Optional

from ..core.errors import ValidationError
from ..core.models import BoundingRect, Face, Person, new_id
from ..core.protocols import PersonRepository


logger = logging.getLogger(__name__)


class IdentityRegistry:
    """Owner of all Person and Face records.

    Optionally backed by a PersonRepository: persons are loaded once on
    construction and every mutation is written through while the lock is
    held, so storage order matches mutation order. Memory changes only after
    the repository write succeeded.
    """

    def __init__(self, repository: Optional[PersonRepository] = None):
        self._lock = threading.RLock()
        self._repository = repository
        # Insertion-ordered: list_persons() returns creation order
        self._persons: dict[str, Person] = {}
        # face_id -> person_id, kept in step with _persons
        self._face_owner: dict[str, str] = {}

        if repository is not None:
            for person in repository.load_persons():
                self._index(person)
            logger.info(f"Loaded {len(self._persons)} persons from repository")

    # --- Internal helpers (lock must be held) ---

    def _index(self, person: Person) -> None:
        previous = self._persons.get(person.id)
        if previous is not None:
            for face in previous.faces:
                self._face_owner.pop(face.id, None)
        for face in person.faces:
            owner = self._face_owner.get(face.id)
            if owner is not None and owner != person.id:
                raise RuntimeError(f"Face {face.id} already belongs to person {owner}")
            self._face_owner[face.id] = person.id
        self._persons[person.id] = person

    def _unindex(self, person_id: str) -> Optional[Person]:
        person = self._persons.pop(person_id, None)
        if person is not None:
            for face in person.faces:
                self._face_owner.pop(face.id, None)
        return person

    def _store(self, person: Person) -> Person:
        # Memory follows storage: a failed write leaves the registry unchanged
        if self._repository is not None:
            self._repository.save_person(person)
        self._index(person)
        return person

    # --- Queries ---

    def list_persons(self) -> list[Person]:
        """Snapshot of all persons in creation order."""
        with self._lock:
            return list(self._persons.values())

    def get_person(self, person_id: str) -> Optional[Person]:
        with self._lock:
            return self._persons.get(person_id)

    def find_face_owner(self, face_id: str) -> Optional[Person]:
        """Person currently owning a face, if any."""
        with self._lock:
            owner_id = self._face_owner.get(face_id)
            return self._persons.get(owner_id) if owner_id else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._persons)

    # --- Mutations ---

    def create_or_update_person(self, name: str, person_id: Optional[str] = None) -> Person:
        """Create a new person, or rename an existing one.

        An absent or unknown ``person_id`` creates a new person with a fresh
        id and no faces. A known id updates the name and keeps the faces.

        Raises:
            ValidationError: blank name
        """
        if not name or not name.strip():
            raise ValidationError("Person name is required")
        name = name.strip()

        with self._lock:
            existing = self._persons.get(person_id) if person_id else None
            if existing is not None:
                person = replace(existing, name=name, modified_at=datetime.now())
                logger.info(f"Updated person {person.id[:8]}: {existing.name!r} -> {name!r}")
            else:
                if person_id:
                    logger.debug(f"Unknown person id {person_id}, creating a new person")
                now = datetime.now()
                person = Person(id=new_id(), name=name, faces=(), created_at=now, modified_at=now)
                logger.info(f"Created person {person.id[:8]}: {name!r}")
            return self._store(person)

    def delete_person(self, person_id: str) -> bool:
        """Remove a person together with its faces. False if unknown."""
        with self._lock:
            if person_id not in self._persons:
                return False
            if self._repository is not None:
                self._repository.delete_person(person_id)
            person = self._unindex(person_id)
            logger.info(f"Deleted person {person_id[:8]} ({person.face_count} faces)")
            return True

    def add_face_to_person(
        self,
        person_id: str,
        source_image: str,
        bounding_rect: BoundingRect,
    ) -> Optional[Person]:
        """Append a new face to a person. None if the person is unknown.

        Raises:
            ValidationError: blank source image reference
        """
        if not source_image or not source_image.strip():
            raise ValidationError("Face source image is required")

        with self._lock:
            person = self._persons.get(person_id)
            if person is None:
                logger.debug(f"add_face_to_person: unknown person {person_id}")
                return None
            face = Face(id=new_id(), source_image=source_image, bounding_rect=bounding_rect)
            updated = replace(person, faces=person.faces + (face,), modified_at=datetime.now())
            logger.debug(f"Added face {face.id[:8]} to person {person_id[:8]}")
            return self._store(updated)

    def remove_face_from_person(self, person_id: str, face_id: str) -> Optional[Person]:
        """Remove one face. None if the person or the face under it is unknown."""
        with self._lock:
            person = self._persons.get(person_id)
            if person is None or person.find_face(face_id) is None:
                logger.debug(f"remove_face_from_person: no face {face_id} under {person_id}")
                return None
            remaining = tuple(f for f in person.faces if f.id != face_id)
            updated = replace(person, faces=remaining, modified_at=datetime.now())
            logger.debug(f"Removed face {face_id[:8]} from person {person_id[:8]}")
            return self._store(updated)

    def move_face(self, face_id: str, target_person_id: str) -> Optional[Person]:
        """Reassign a face to another person.

        Performed as remove-then-add under one lock acquisition; the face gets
        a new id under its new owner. Returns the updated target person, or
        None if the face or the target is unknown.
        """
        with self._lock:
            owner = self.find_face_owner(face_id)
            target = self._persons.get(target_person_id)
            if owner is None or target is None:
                return None
            if owner.id == target.id:
                return target
            face = owner.find_face(face_id)
            if face is None:
                return None
            self.remove_face_from_person(owner.id, face_id)
            return self.add_face_to_person(target.id, face.source_image, face.bounding_rect)
