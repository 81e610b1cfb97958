"""
Tests for the status module.

Tests cover:
- The IN_PROGRESS -> RESULT_RELEASED transition
- Rejection of illegal transitions
- Poll bookkeeping and notification marking
- Dictionary round trip used by the store
"""

import pytest

from result_watcher.status import (
    InvalidTransitionError,
    Subject,
    SubjectStatus,
    mark_notified,
    release,
    touch,
)


@pytest.fixture
def subject():
    """A subject waiting for its result."""
    return Subject(
        id=7,
        name="Asha Raman",
        roll_number="21CS001",
        date_of_birth="05-06-2002",
        email_address="asha@example.com",
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
    )


class TestRelease:
    """Tests for the release transition."""

    def test_release_sets_all_fields_together(self, subject):
        """Test that status, snapshot and timestamps change together."""
        released = release(subject, "<table>Grade: A</table>", now="2024-05-01T10:00:00+00:00")

        assert released.status == SubjectStatus.RESULT_RELEASED
        assert released.result_snapshot == "<table>Grade: A</table>"
        assert released.released_at == "2024-05-01T10:00:00+00:00"
        assert released.updated_at == "2024-05-01T10:00:00+00:00"
        assert released.created_at == subject.created_at

    def test_release_does_not_mutate_input(self, subject):
        """Test that the original subject is left untouched."""
        release(subject, "<table>Grade: A</table>")

        assert subject.status == SubjectStatus.IN_PROGRESS
        assert subject.result_snapshot is None
        assert subject.released_at is None

    def test_release_is_terminal(self, subject):
        """Test that a released subject cannot be released again."""
        released = release(subject, "<table>Grade: A</table>")

        with pytest.raises(InvalidTransitionError):
            release(released, "<table>Grade: B</table>")

    def test_release_requires_snapshot(self, subject):
        """Test that an empty snapshot is rejected."""
        with pytest.raises(InvalidTransitionError):
            release(subject, "")

    def test_release_defaults_to_current_time(self, subject):
        """Test that a timestamp is generated when none is given."""
        released = release(subject, "<table>Grade: A</table>")

        assert released.released_at
        assert released.released_at == released.updated_at


class TestTouch:
    """Tests for no-op poll bookkeeping."""

    def test_touch_only_updates_timestamp(self, subject):
        """Test that touch refreshes updated_at and nothing else."""
        touched = touch(subject, now="2024-02-02T00:00:00+00:00")

        assert touched.updated_at == "2024-02-02T00:00:00+00:00"
        assert touched.status == SubjectStatus.IN_PROGRESS
        assert touched.released_at is None


class TestMarkNotified:
    """Tests for notification bookkeeping."""

    def test_mark_notified_after_release(self, subject):
        """Test recording a delivered notification."""
        released = release(subject, "<table>Grade: A</table>")

        notified = mark_notified(released, now="2024-05-01T10:05:00+00:00")

        assert notified.notified_at == "2024-05-01T10:05:00+00:00"
        assert notified.status == SubjectStatus.RESULT_RELEASED

    def test_mark_notified_requires_release(self, subject):
        """Test that an unreleased subject cannot be marked notified."""
        with pytest.raises(InvalidTransitionError):
            mark_notified(subject)


class TestSerialization:
    """Tests for dictionary conversion."""

    def test_round_trip(self, subject):
        """Test that to_dict and from_dict preserve a released subject."""
        released = release(subject, "<table>Grade: A</table>")

        data = released.to_dict()

        assert data["status"] == "RESULT_RELEASED"
        assert Subject.from_dict(data) == released

    def test_from_dict_defaults(self):
        """Test that optional fields default sensibly."""
        subject = Subject.from_dict({"id": "3", "roll_number": "21CS002", "date_of_birth": "01/01/2003"})

        assert subject.id == 3
        assert subject.status == SubjectStatus.IN_PROGRESS
        assert subject.whatsapp_number is None
