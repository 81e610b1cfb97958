"""
Subject store for the Result Watcher pipeline.

Defines the store contract the scheduler relies on, plus a JSON-file
implementation that persists every write with an atomic replace.
"""

import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from result_watcher import status
from result_watcher.status import InvalidTransitionError, Subject, SubjectStatus
from result_watcher.utils import DEFAULT_DATA_PATH, get_logger, safe_read_json, safe_write_json


# Module logger
logger = get_logger("store")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class StoreError(Exception):
    """Raised when the subject store cannot complete an operation."""


class DuplicateSubjectError(StoreError):
    """Raised when a roll number is already registered."""


class SubjectStore(ABC):
    """Persistence contract for tracked subjects."""

    @abstractmethod
    def create_subject(self, fields: Dict[str, Any]) -> Subject:
        """Create a subject in IN_PROGRESS state."""

    @abstractmethod
    def find_by_roll_number(self, roll_number: str) -> Optional[Subject]:
        """Look up a subject by roll number."""

    @abstractmethod
    def find_by_id(self, subject_id: int) -> Optional[Subject]:
        """Look up a subject by id."""

    @abstractmethod
    def list_all(self) -> List[Subject]:
        """Return every subject, newest first."""

    @abstractmethod
    def list_eligible(self) -> List[Subject]:
        """Return subjects still waiting for their result."""

    @abstractmethod
    def list_unnotified(self) -> List[Subject]:
        """Return released subjects whose notification was never delivered."""

    @abstractmethod
    def apply_release(self, subject_id: int, snapshot: str) -> Subject:
        """Mark a subject as released with the given snapshot."""

    @abstractmethod
    def touch(self, subject_id: int) -> None:
        """Refresh updated_at after a poll that found nothing."""

    @abstractmethod
    def mark_notified(self, subject_id: int) -> Subject:
        """Record that the release notification was delivered."""


class JsonSubjectStore(SubjectStore):
    """
    SubjectStore backed by a single JSON file.

    The whole document is rewritten on each mutation. A lock serializes
    writers inside the process.
    """

    def __init__(self, filepath: str = DEFAULT_DATA_PATH):
        self.filepath = filepath
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, Any]:
        if not Path(self.filepath).exists():
            return {"next_id": 1, "subjects": []}
        data = safe_read_json(self.filepath, default=None)
        if data is None:
            raise StoreError(f"Could not read subjects from {self.filepath}")
        if not isinstance(data, dict) or not isinstance(data.get("subjects"), list):
            raise StoreError(f"Unexpected data format in {self.filepath}")
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        if not safe_write_json(self.filepath, data):
            raise StoreError(f"Failed to write subjects to {self.filepath}")

    def _subjects(self) -> List[Subject]:
        try:
            return [Subject.from_dict(entry) for entry in self._load()["subjects"]]
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Corrupt subject entry in {self.filepath}: {e}") from e

    def _replace(self, updated: Subject) -> None:
        data = self._load()
        entries = data["subjects"]
        for index, entry in enumerate(entries):
            if int(entry.get("id", -1)) == updated.id:
                entries[index] = updated.to_dict()
                self._save(data)
                return
        raise StoreError(f"Subject {updated.id} not found")

    def _require(self, subject_id: int) -> Subject:
        subject = self.find_by_id(subject_id)
        if subject is None:
            raise StoreError(f"Subject {subject_id} not found")
        return subject

    def create_subject(self, fields: Dict[str, Any]) -> Subject:
        with self._lock:
            data = self._load()
            roll_number = fields["roll_number"]
            if any(entry.get("roll_number") == roll_number for entry in data["subjects"]):
                raise DuplicateSubjectError(f"Roll number already registered: {roll_number}")

            now = status.utc_now()
            subject = Subject(
                id=int(data.get("next_id", 1)),
                name=fields.get("name", ""),
                roll_number=roll_number,
                date_of_birth=fields["date_of_birth"],
                whatsapp_number=fields.get("whatsapp_number") or None,
                email_address=fields.get("email_address") or None,
                status=SubjectStatus.IN_PROGRESS,
                created_at=now,
                updated_at=now,
            )
            data["subjects"].append(subject.to_dict())
            data["next_id"] = subject.id + 1
            self._save(data)

        logger.info(f"Registered subject {subject.id} ({subject.roll_number})")
        return subject

    def find_by_roll_number(self, roll_number: str) -> Optional[Subject]:
        for subject in self._subjects():
            if subject.roll_number == roll_number:
                return subject
        return None

    def find_by_id(self, subject_id: int) -> Optional[Subject]:
        for subject in self._subjects():
            if subject.id == subject_id:
                return subject
        return None

    def list_all(self) -> List[Subject]:
        return sorted(self._subjects(), key=lambda s: s.created_at, reverse=True)

    def list_eligible(self) -> List[Subject]:
        return [s for s in self._subjects() if s.status == SubjectStatus.IN_PROGRESS]

    def list_unnotified(self) -> List[Subject]:
        return [s for s in self._subjects() if s.is_released and not s.notified_at]

    def apply_release(self, subject_id: int, snapshot: str) -> Subject:
        with self._lock:
            try:
                released = status.release(self._require(subject_id), snapshot)
            except InvalidTransitionError as e:
                raise StoreError(str(e)) from e
            self._replace(released)

        logger.info(f"Subject {released.roll_number} marked {released.status.value}")
        return released

    def touch(self, subject_id: int) -> None:
        with self._lock:
            self._replace(status.touch(self._require(subject_id)))

    def mark_notified(self, subject_id: int) -> Subject:
        with self._lock:
            try:
                notified = status.mark_notified(self._require(subject_id))
            except InvalidTransitionError as e:
                raise StoreError(str(e)) from e
            self._replace(notified)
        return notified


def register_subject(
    store: SubjectStore,
    name: str,
    roll_number: str,
    date_of_birth: str,
    whatsapp_number: Optional[str] = None,
    email_address: Optional[str] = None
) -> Subject:
    """
    Validate a registration and create the subject.

    Args:
        store: Store to create the subject in.
        name: Display name.
        roll_number: Unique roll number.
        date_of_birth: Date of birth as DD-MM-YYYY or DD/MM/YYYY.
        whatsapp_number: Optional WhatsApp number.
        email_address: Optional email address.

    Returns:
        The created Subject.

    Raises:
        ValueError: If required fields are missing or no contact is given.
        DuplicateSubjectError: If the roll number is already registered.
    """
    name = (name or "").strip()
    roll_number = (roll_number or "").strip()
    date_of_birth = (date_of_birth or "").strip()
    whatsapp_number = (whatsapp_number or "").strip() or None
    email_address = (email_address or "").strip() or None

    if not name or not roll_number or not date_of_birth:
        raise ValueError("Missing required fields: name, roll_number and date_of_birth")
    if not whatsapp_number and not email_address:
        raise ValueError("Either a WhatsApp number or an email address is required")
    if email_address and not EMAIL_PATTERN.match(email_address):
        raise ValueError(f"Invalid email address: {email_address}")

    if store.find_by_roll_number(roll_number) is not None:
        raise DuplicateSubjectError(f"Roll number already registered: {roll_number}")

    return store.create_subject({
        "name": name,
        "roll_number": roll_number,
        "date_of_birth": date_of_birth,
        "whatsapp_number": whatsapp_number,
        "email_address": email_address,
    })
