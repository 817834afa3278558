"""Transient warnings raised while a session is running."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class WarningKind(StrEnum):
    """Non-fatal conditions surfaced to the session controller."""

    FRAME_DROPPED = "FrameDropped"
    STALE_RESULT_DISCARDED = "StaleResultDiscarded"
    RECONNECT_ATTEMPT_FAILED = "ReconnectAttemptFailed"
    CAMERA_STALLED = "CameraStalled"
    BACKEND_ERROR = "BackendError"


@dataclass(frozen=True)
class SessionWarning:
    """A warning with the time it was raised."""

    kind: WarningKind
    message: str
    raised_at: datetime
