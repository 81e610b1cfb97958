"""
Tests for the store module.

Tests cover:
- Subject creation and lookup
- Eligibility filtering
- Release, touch and notification writes
- Registration validation
- Failure reporting through StoreError
"""

import json
from unittest.mock import patch

import pytest

from result_watcher.status import SubjectStatus
from result_watcher.store import (
    DuplicateSubjectError,
    JsonSubjectStore,
    StoreError,
    register_subject,
)


@pytest.fixture
def store(tmp_path):
    """Store backed by a temporary file."""
    return JsonSubjectStore(str(tmp_path / "data" / "subjects.json"))


def _fields(roll_number="21CS001", **overrides):
    fields = {
        "name": "Asha Raman",
        "roll_number": roll_number,
        "date_of_birth": "05-06-2002",
        "whatsapp_number": "+919800000001",
        "email_address": "asha@example.com",
    }
    fields.update(overrides)
    return fields


class TestCreateAndFind:
    """Tests for subject creation and lookup."""

    def test_create_assigns_id_and_status(self, store):
        """Test that new subjects start in progress with timestamps."""
        subject = store.create_subject(_fields())

        assert subject.id == 1
        assert subject.status == SubjectStatus.IN_PROGRESS
        assert subject.created_at
        assert subject.created_at == subject.updated_at
        assert subject.result_snapshot is None
        assert subject.released_at is None

    def test_ids_increment(self, store):
        """Test that ids are unique and increasing."""
        first = store.create_subject(_fields("21CS001"))
        second = store.create_subject(_fields("21CS002"))

        assert (first.id, second.id) == (1, 2)

    def test_persisted_to_disk(self, store):
        """Test that subjects survive a new store instance."""
        store.create_subject(_fields())

        reopened = JsonSubjectStore(store.filepath)

        assert reopened.find_by_roll_number("21CS001").name == "Asha Raman"

    def test_find_by_id_and_roll(self, store):
        """Test both lookups, including misses."""
        created = store.create_subject(_fields())

        assert store.find_by_id(created.id) == created
        assert store.find_by_roll_number("21CS001") == created
        assert store.find_by_id(99) is None
        assert store.find_by_roll_number("NOPE") is None

    def test_duplicate_roll_number(self, store):
        """Test that roll numbers are unique."""
        store.create_subject(_fields())

        with pytest.raises(DuplicateSubjectError):
            store.create_subject(_fields())

    def test_empty_store(self, store):
        """Test reads on a store with no file yet."""
        assert store.list_all() == []
        assert store.list_eligible() == []


class TestTransitions:
    """Tests for state-affecting writes."""

    def test_release_removes_from_eligible(self, store):
        """Test that a released subject is never eligible again."""
        first = store.create_subject(_fields("21CS001"))
        second = store.create_subject(_fields("21CS002"))

        released = store.apply_release(first.id, "<table>Grade: A</table>")

        assert released.status == SubjectStatus.RESULT_RELEASED
        assert released.result_snapshot == "<table>Grade: A</table>"
        assert released.released_at is not None
        assert [s.id for s in store.list_eligible()] == [second.id]
        assert store.find_by_id(first.id).released_at == released.released_at

    def test_release_twice_fails(self, store):
        """Test that the release transition is applied only once."""
        subject = store.create_subject(_fields())
        store.apply_release(subject.id, "<table>Grade: A</table>")

        with pytest.raises(StoreError, match="already"):
            store.apply_release(subject.id, "<table>Grade: B</table>")

        assert store.find_by_id(subject.id).result_snapshot == "<table>Grade: A</table>"

    def test_release_unknown_subject(self, store):
        """Test that releasing a missing subject raises StoreError."""
        with pytest.raises(StoreError, match="not found"):
            store.apply_release(42, "<table></table>")

    def test_touch_updates_timestamp(self, store):
        """Test that touch only refreshes updated_at."""
        subject = store.create_subject(_fields())

        with patch("result_watcher.status.utc_now", return_value="2099-01-01T00:00:00+00:00"):
            store.touch(subject.id)

        touched = store.find_by_id(subject.id)
        assert touched.updated_at == "2099-01-01T00:00:00+00:00"
        assert touched.status == SubjectStatus.IN_PROGRESS

    def test_unnotified_and_mark_notified(self, store):
        """Test tracking of undelivered release notifications."""
        subject = store.create_subject(_fields())
        store.apply_release(subject.id, "<table>Grade: A</table>")

        assert [s.id for s in store.list_unnotified()] == [subject.id]

        store.mark_notified(subject.id)

        assert store.list_unnotified() == []
        assert store.find_by_id(subject.id).notified_at is not None

    def test_mark_notified_requires_release(self, store):
        """Test that notification cannot be recorded before release."""
        subject = store.create_subject(_fields())

        with pytest.raises(StoreError):
            store.mark_notified(subject.id)


class TestFailures:
    """Tests for persistence failures."""

    def test_write_failure_raises(self, store):
        """Test that a failed write surfaces as StoreError."""
        with patch("result_watcher.store.safe_write_json", return_value=False):
            with pytest.raises(StoreError, match="Failed to write"):
                store.create_subject(_fields())

    def test_corrupt_document(self, store, tmp_path):
        """Test that an unexpected document shape raises StoreError."""
        path = tmp_path / "data" / "subjects.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(["not", "a", "store"]), encoding="utf-8")

        with pytest.raises(StoreError, match="Unexpected data format"):
            store.list_eligible()

    def test_truncated_file_is_not_treated_as_empty(self, store, tmp_path):
        """Test that an unreadable file raises and is never overwritten."""
        for roll_number in ("R1", "R2", "R3"):
            store.create_subject(_fields(roll_number=roll_number))
        path = tmp_path / "data" / "subjects.json"
        content = path.read_text(encoding="utf-8")
        path.write_text(content[:-3], encoding="utf-8")

        with pytest.raises(StoreError, match="Could not read"):
            store.list_eligible()
        with pytest.raises(StoreError, match="Could not read"):
            store.create_subject(_fields(roll_number="R4"))

        assert path.read_text(encoding="utf-8") == content[:-3]


class TestRegisterSubject:
    """Tests for registration validation."""

    def test_register_with_email_only(self, store):
        """Test that one contact channel is enough."""
        subject = register_subject(store, "Asha", "21CS001", "05-06-2002", email_address="asha@example.com")

        assert subject.whatsapp_number is None
        assert subject.email_address == "asha@example.com"

    def test_register_strips_whitespace(self, store):
        """Test that inputs are trimmed."""
        subject = register_subject(store, " Asha ", " 21CS001 ", "05-06-2002", whatsapp_number=" +9198 ")

        assert subject.name == "Asha"
        assert subject.roll_number == "21CS001"
        assert subject.whatsapp_number == "+9198"

    def test_register_requires_contact(self, store):
        """Test that at least one contact is required."""
        with pytest.raises(ValueError, match="WhatsApp number or an email"):
            register_subject(store, "Asha", "21CS001", "05-06-2002")

    def test_register_requires_fields(self, store):
        """Test that name, roll number and date of birth are required."""
        with pytest.raises(ValueError, match="Missing required fields"):
            register_subject(store, "", "21CS001", "05-06-2002", email_address="a@example.com")

    def test_register_rejects_invalid_email(self, store):
        """Test basic email validation."""
        with pytest.raises(ValueError, match="Invalid email"):
            register_subject(store, "Asha", "21CS001", "05-06-2002", email_address="not-an-email")

    def test_register_duplicate(self, store):
        """Test that a registered roll number is rejected."""
        register_subject(store, "Asha", "21CS001", "05-06-2002", email_address="asha@example.com")

        with pytest.raises(DuplicateSubjectError):
            register_subject(store, "Asha", "21CS001", "05-06-2002", email_address="asha@example.com")
