"""Exception hierarchy for attendance sessions."""


class AttendanceError(Exception):
    """Base error for the attendance client."""


class CameraError(AttendanceError):
    """Camera device failure."""


class CameraAcquisitionError(CameraError):
    """The camera could not be opened."""


class CameraPermissionDeniedError(CameraAcquisitionError):
    """The user or OS refused access to the camera."""


class CameraUnavailableError(CameraAcquisitionError):
    """No usable camera device was found."""


class CameraInUseError(CameraAcquisitionError):
    """The camera is held by another process."""


class CameraReadError(CameraError):
    """A single frame could not be read."""


class CameraLostError(CameraError):
    """The camera disappeared while a session was running."""


class FrameEncodingError(CameraError):
    """A captured frame could not be encoded for transport."""


class ChannelError(AttendanceError):
    """Streaming channel failure."""


class ChannelClosedError(ChannelError):
    """The streaming channel is closed."""


class ConnectionFailedError(AttendanceError):
    """Neither streaming nor single-shot recognition is reachable."""


class InvalidTransitionError(AttendanceError):
    """A state change outside the session state machine was requested."""


class SessionBusyError(AttendanceError):
    """A session start was requested while another session is running."""

    def __init__(self, state: str) -> None:
        super().__init__(f"Session is busy (state={state})")
        self.state = state


class SessionStartError(AttendanceError):
    """The session could not become active."""

    def __init__(self, cause: str, message: str) -> None:
        super().__init__(message)
        self.cause = cause


class SessionCancelledError(AttendanceError):
    """The session was stopped before it became active."""
