"""Tests for session summaries."""

from datetime import UTC, datetime, timedelta

from facial_attendance.domain.attendance import AttendanceRecord
from facial_attendance.domain.sessions import Session, SessionState
from facial_attendance.services.summary import build_summary, format_duration
from tests.conftest import ROSTER


def test_summary_counts_present_and_absent() -> None:
    started = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)
    session = Session(
        session_id="1709542800000",
        course_id="CSC101",
        state=SessionState.ACTIVE,
        started_at=started,
    )
    records = [
        AttendanceRecord(
            student_id="S1",
            display_name="Ada Obi",
            recorded_at=started + timedelta(seconds=5),
            confidence=0.9,
        )
    ]

    summary = build_summary(session, ROSTER, records, started + timedelta(seconds=95))

    assert summary.duration_seconds == 95
    assert summary.present_count == 1
    assert summary.total_students == 2
    assert summary.attendance_rate == 50.0
    assert summary.absent_student_ids == ["S2"]


def test_summary_uses_end_time_when_finished() -> None:
    started = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)
    session = Session(
        session_id="1",
        course_id="CSC101",
        state=SessionState.IDLE,
        started_at=started,
        ended_at=started + timedelta(seconds=30),
    )

    summary = build_summary(session, [], [], started + timedelta(hours=1))

    assert summary.duration_seconds == 30
    assert summary.attendance_rate == 0.0


def test_format_duration() -> None:
    assert format_duration(0) == "00:00"
    assert format_duration(75) == "01:15"
    assert format_duration(3725) == "62:05"
