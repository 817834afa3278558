"""Session summary figures."""

from datetime import datetime

from facial_attendance.domain.attendance import (
    AttendanceRecord,
    EnrolledStudent,
    SessionSummary,
)
from facial_attendance.domain.sessions import Session


def build_summary(
    session: Session,
    roster: list[EnrolledStudent],
    records: list[AttendanceRecord],
    now: datetime,
) -> SessionSummary:
    """Aggregate a session's log against its roster."""
    end = session.ended_at or now
    duration = max(0, int((end - session.started_at).total_seconds()))
    present = {record.student_id for record in records}
    total = len(roster)
    rate = (len(present) / total) * 100 if total else 0.0
    return SessionSummary(
        session_id=session.session_id,
        course_id=session.course_id,
        started_at=session.started_at,
        ended_at=session.ended_at,
        duration_seconds=duration,
        total_students=total,
        present_count=len(present),
        attendance_rate=rate,
        absent_student_ids=[
            student.student_id
            for student in roster
            if student.student_id not in present
        ],
    )


def format_duration(seconds: int) -> str:
    """Render elapsed seconds as MM:SS."""
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"
