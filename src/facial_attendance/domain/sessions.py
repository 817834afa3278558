"""Domain models for attendance sessions."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class SessionState(StrEnum):
    """States of the attendance session state machine."""

    IDLE = "Idle"
    STARTING = "Starting"
    ACTIVE = "Active"
    STOPPING = "Stopping"
    ERROR = "Error"


class FailureCause(StrEnum):
    """Reasons a session failed to start or was forced to stop."""

    CAMERA_DENIED = "CameraDenied"
    CAMERA_UNAVAILABLE = "CameraUnavailable"
    CONNECTION_FAILED = "ConnectionFailed"
    CONNECTION_LOST = "ConnectionLost"
    CAMERA_LOST = "CameraLost"


@dataclass
class Session:
    """One attendance-taking run for a single course."""

    session_id: str
    course_id: str
    state: SessionState
    started_at: datetime
    ended_at: datetime | None = None
