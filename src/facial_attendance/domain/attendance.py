"""Domain models for rosters and attendance records."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class EnrolledStudent:
    """Roster entry supplied when a session starts."""

    student_id: str
    display_name: str


@dataclass(frozen=True)
class AttendanceRecord:
    """The first recognition of a student within a session."""

    student_id: str
    display_name: str
    recorded_at: datetime
    confidence: float | None


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of reconciling one batch of detections."""

    new_records: list[AttendanceRecord] = field(default_factory=list)
    repeat_student_ids: list[str] = field(default_factory=list)
    unmatched: int = 0


@dataclass(frozen=True)
class SessionSummary:
    """Aggregate view of a session handed to reporting collaborators."""

    session_id: str
    course_id: str
    started_at: datetime
    ended_at: datetime | None
    duration_seconds: int
    total_students: int
    present_count: int
    attendance_rate: float
    absent_student_ids: list[str]
