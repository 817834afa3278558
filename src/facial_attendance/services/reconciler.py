"""Reconciliation of detections against the enrolled roster."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from facial_attendance.domain.attendance import (
    AttendanceRecord,
    EnrolledStudent,
    ReconcileOutcome,
)
from facial_attendance.domain.recognition import RecognitionDetection

_logger = logging.getLogger(__name__)

SCANNING_HINT = "Scanning for faces..."


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class RosterReconciler:
    """Owns the session's append-only attendance log.

    A student is marked present the first time a recognized detection
    carries their id. Later detections only refresh the "last seen" hint.
    `reconcile` never awaits, so the check and the append happen in one
    step on the event loop.
    """

    clock: Callable[[], datetime] = _utcnow
    _roster: dict[str, EnrolledStudent] = field(default_factory=dict, init=False)
    _log: list[AttendanceRecord] = field(default_factory=list, init=False)
    _present: set[str] = field(default_factory=set, init=False)
    last_seen: dict[str, datetime] = field(default_factory=dict, init=False)
    last_detection: str = field(default="", init=False)
    recognition_strength: float = field(default=0.0, init=False)

    def start(self, roster: list[EnrolledStudent]) -> None:
        """Load a roster and clear the previous session's log."""
        self._roster = {student.student_id: student for student in roster}
        self._log = []
        self._present = set()
        self.last_seen = {}
        self.last_detection = ""
        self.recognition_strength = 0.0

    @property
    def roster(self) -> list[EnrolledStudent]:
        return list(self._roster.values())

    @property
    def attendance_log(self) -> list[AttendanceRecord]:
        """Records in first-recognition order."""
        return list(self._log)

    @property
    def present_ids(self) -> set[str]:
        return set(self._present)

    def absent_students(self) -> list[EnrolledStudent]:
        """Roster entries not yet marked present, in roster order."""
        return [
            student
            for student_id, student in self._roster.items()
            if student_id not in self._present
        ]

    def reconcile(self, detections: list[RecognitionDetection]) -> ReconcileOutcome:
        """Apply one batch of detections to the log."""
        new_records: list[AttendanceRecord] = []
        repeats: list[str] = []
        unmatched = 0
        recognized_any = False

        for detection in detections:
            student = self._match(detection)
            if student is None:
                unmatched += 1
                continue
            recognized_any = True
            now = self.clock()
            self.last_seen[student.student_id] = now
            self.recognition_strength = (detection.confidence or 0.0) * 100

            if student.student_id in self._present:
                repeats.append(student.student_id)
                self.last_detection = f"{student.display_name} (Already recorded)"
                continue

            record = AttendanceRecord(
                student_id=student.student_id,
                display_name=student.display_name,
                recorded_at=now,
                confidence=detection.confidence,
            )
            self._present.add(student.student_id)
            self._log.append(record)
            new_records.append(record)
            self.last_detection = student.display_name
            _logger.info(
                "Marked present: student_id=%s confidence=%s",
                student.student_id,
                detection.confidence,
            )

        if not recognized_any:
            self.last_detection = SCANNING_HINT
            self.recognition_strength = 0.0

        return ReconcileOutcome(
            new_records=new_records,
            repeat_student_ids=repeats,
            unmatched=unmatched,
        )

    def _match(self, detection: RecognitionDetection) -> EnrolledStudent | None:
        if not detection.recognized or not detection.student_id:
            return None
        return self._roster.get(detection.student_id.strip())
