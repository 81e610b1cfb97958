"""
Subject model and status machine for the Result Watcher pipeline.

A subject moves through a single transition:

    IN_PROGRESS --(result available)--> RESULT_RELEASED

RESULT_RELEASED is terminal. The functions here are pure: they return
updated copies and leave persistence to the store.
"""

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SubjectStatus(str, Enum):
    """Lifecycle state of a tracked subject."""
    IN_PROGRESS = "IN_PROGRESS"
    RESULT_RELEASED = "RESULT_RELEASED"


class InvalidTransitionError(Exception):
    """Raised when a status transition is not allowed."""


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Subject:
    """
    An individual being watched for result release.

    Attributes:
        id: Store-assigned identifier.
        name: Display name used in notifications.
        roll_number: Unique roll number, used to query the results page.
        date_of_birth: Date of birth as registered (DD-MM-YYYY or DD/MM/YYYY).
        whatsapp_number: Optional WhatsApp number in E.164 form.
        email_address: Optional email address.
        status: Current lifecycle state.
        result_snapshot: Raw markup captured when the result was released.
        created_at: Creation timestamp.
        updated_at: Timestamp of the last state-affecting write.
        released_at: Timestamp of the release transition.
        notified_at: Timestamp of the successful release notification.
    """
    id: int
    name: str
    roll_number: str
    date_of_birth: str
    whatsapp_number: Optional[str] = None
    email_address: Optional[str] = None
    status: SubjectStatus = SubjectStatus.IN_PROGRESS
    result_snapshot: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    released_at: Optional[str] = None
    notified_at: Optional[str] = None

    @property
    def is_released(self) -> bool:
        return self.status == SubjectStatus.RESULT_RELEASED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subject":
        """Build a Subject from its dictionary form."""
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            roll_number=data["roll_number"],
            date_of_birth=data["date_of_birth"],
            whatsapp_number=data.get("whatsapp_number") or None,
            email_address=data.get("email_address") or None,
            status=SubjectStatus(data.get("status", SubjectStatus.IN_PROGRESS.value)),
            result_snapshot=data.get("result_snapshot"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            released_at=data.get("released_at"),
            notified_at=data.get("notified_at"),
        )


def release(subject: Subject, snapshot: str, now: Optional[str] = None) -> Subject:
    """
    Apply the IN_PROGRESS -> RESULT_RELEASED transition.

    Sets status, snapshot, released_at and updated_at together.

    Args:
        subject: Subject currently in progress.
        snapshot: Raw markup of the result page.
        now: Timestamp to record. Defaults to the current UTC time.

    Returns:
        A released copy of the subject.

    Raises:
        InvalidTransitionError: If the subject is already released or the
            snapshot is empty.
    """
    if subject.is_released:
        raise InvalidTransitionError(
            f"Subject {subject.roll_number} is already {SubjectStatus.RESULT_RELEASED.value}"
        )
    if not snapshot:
        raise InvalidTransitionError(f"Refusing to release {subject.roll_number} without a snapshot")

    timestamp = now or utc_now()
    return replace(
        subject,
        status=SubjectStatus.RESULT_RELEASED,
        result_snapshot=snapshot,
        released_at=timestamp,
        updated_at=timestamp,
    )


def touch(subject: Subject, now: Optional[str] = None) -> Subject:
    """Record a poll that found nothing; only updated_at changes."""
    return replace(subject, updated_at=now or utc_now())


def mark_notified(subject: Subject, now: Optional[str] = None) -> Subject:
    """Record a delivered release notification."""
    if not subject.is_released:
        raise InvalidTransitionError(f"Subject {subject.roll_number} has no released result to notify")

    timestamp = now or utc_now()
    return replace(subject, notified_at=timestamp, updated_at=timestamp)
