"""Session state machine for facial-recognition attendance."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from facial_attendance.domain.attendance import (
    AttendanceRecord,
    EnrolledStudent,
    SessionSummary,
)
from facial_attendance.domain.errors import (
    CameraPermissionDeniedError,
    InvalidTransitionError,
    SessionBusyError,
    SessionCancelledError,
    SessionStartError,
)
from facial_attendance.domain.events import SessionWarning, WarningKind
from facial_attendance.domain.overlay import OverlayItem
from facial_attendance.domain.recognition import RecognitionDetection, ResultBatch
from facial_attendance.domain.sessions import FailureCause, Session, SessionState
from facial_attendance.services.overlay import OverlayProjector
from facial_attendance.services.reconciler import RosterReconciler
from facial_attendance.services.sampler import FrameSampler, VideoSource
from facial_attendance.services.summary import build_summary
from facial_attendance.services.transport import RecognitionTransport

_logger = logging.getLogger(__name__)

_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.STARTING},
    SessionState.STARTING: {
        SessionState.ACTIVE,
        SessionState.ERROR,
        SessionState.STOPPING,
    },
    SessionState.ACTIVE: {SessionState.STOPPING},
    SessionState.STOPPING: {SessionState.IDLE, SessionState.ERROR},
    SessionState.ERROR: {SessionState.IDLE},
}


class AttendanceSink(Protocol):
    """Collaborator that receives the finished attendance log."""

    async def submit(
        self, summary: SessionSummary, records: list[AttendanceRecord]
    ) -> None:
        """Persist or report a finished session."""


class SessionListener(Protocol):
    """User-facing observer of session progress."""

    def on_state_changed(self, state: SessionState, cause: FailureCause | None) -> None:
        """Handle a state transition."""

    def on_warning(self, warning: SessionWarning) -> None:
        """Handle a transient warning."""

    def on_attendance(self, record: AttendanceRecord) -> None:
        """Handle a student being marked present."""


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class SessionController:
    """Sole authority over session state.

    Camera, transport and sampler are started and stopped only from here.
    Every start and stop bumps a generation counter; results tagged with an
    older generation are ignored.
    """

    video_source: VideoSource
    transport: RecognitionTransport
    sampler: FrameSampler
    reconciler: RosterReconciler
    projector: OverlayProjector
    sink: AttendanceSink | None = None
    listener: SessionListener | None = None
    clock: Callable[[], datetime] = _utcnow
    warning_history: int = 50
    _state: SessionState = field(default=SessionState.IDLE, init=False)
    _session: Session | None = field(default=None, init=False)
    _failure: FailureCause | None = field(default=None, init=False)
    _generation: int = field(default=0, init=False)
    _latest: ResultBatch | None = field(default=None, init=False)
    _warnings: deque[SessionWarning] = field(default_factory=deque, init=False)
    _acquisition: asyncio.Future | None = field(default=None, init=False)
    _teardown_task: asyncio.Task | None = field(default=None, init=False)
    _background: set[asyncio.Task] = field(default_factory=set, init=False)

    def __post_init__(self) -> None:
        self._warnings = deque(maxlen=self.warning_history)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def failure_cause(self) -> FailureCause | None:
        return self._failure

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def attendance_log(self) -> list[AttendanceRecord]:
        return self.reconciler.attendance_log

    @property
    def warnings(self) -> list[SessionWarning]:
        return list(self._warnings)

    @property
    def latest_detections(self) -> list[RecognitionDetection]:
        return [] if self._latest is None else list(self._latest.detections)

    async def start_session(
        self, course_id: str, roster: list[EnrolledStudent]
    ) -> Session:
        """Acquire the camera and recognizer, then begin sampling."""
        if self._state is not SessionState.IDLE:
            raise SessionBusyError(self._state)

        self._generation += 1
        generation = self._generation
        started_at = self.clock()
        self._session = Session(
            session_id=str(int(started_at.timestamp() * 1000)),
            course_id=course_id,
            state=SessionState.STARTING,
            started_at=started_at,
        )
        self._failure = None
        self._latest = None
        self._transition(SessionState.STARTING)

        acquisition = asyncio.gather(
            self.video_source.acquire(),
            self.transport.open(course_id, generation, self),
            return_exceptions=True,
        )
        self._acquisition = acquisition
        try:
            camera_result, transport_result = await acquisition
        except asyncio.CancelledError:
            if generation == self._generation:
                await self._abort_start()
            raise
        finally:
            if self._acquisition is acquisition:
                self._acquisition = None

        # stop_session waited for this acquisition and owns the teardown
        if generation != self._generation:
            raise SessionCancelledError("Session was stopped while starting")

        cause = _acquisition_failure(camera_result, transport_result)
        if cause is not None:
            failure = (
                camera_result
                if isinstance(camera_result, BaseException)
                else transport_result
            )
            await self._release_resources()
            self._failure = cause
            self._transition(SessionState.ERROR)
            _logger.warning("Session start failed: cause=%s error=%s", cause, failure)
            raise SessionStartError(cause, str(failure) or cause)

        self.reconciler.start(roster)
        self.sampler.start(self)
        self._transition(SessionState.ACTIVE)
        _logger.info(
            "Session active: session_id=%s course_id=%s roster=%s mode=%s",
            self._session.session_id,
            course_id,
            len(roster),
            transport_result,
        )
        return self._session

    async def stop_session(self) -> list[AttendanceRecord]:
        """Drive the controller to Idle from any state and return the log.

        A stop during Starting stays in Stopping until the pending camera and
        recognizer acquisitions settle, so nothing they acquire outlives it.
        """
        self._generation += 1
        if self._state is SessionState.STOPPING:
            if self._teardown_task is not None:
                await asyncio.shield(self._teardown_task)
            if self._state is SessionState.STOPPING:
                self._transition(SessionState.IDLE)

        if self._state is SessionState.IDLE:
            return self.attendance_log

        if self._state is SessionState.ERROR:
            await self._release_resources()
            self._transition(SessionState.IDLE)
            return self.attendance_log

        was_active = self._state is SessionState.ACTIVE
        self._transition(SessionState.STOPPING)
        await self._teardown(self._acquisition)
        self._end_session()
        if self._state is not SessionState.STOPPING:
            return self.attendance_log
        self._transition(SessionState.IDLE)
        if was_active:
            await self._hand_off()
        return self.attendance_log

    def reset(self) -> None:
        """Return from Error to Idle."""
        if self._state is not SessionState.ERROR:
            _logger.info("Reset ignored in state %s", self._state)
            return
        self._failure = None
        self._transition(SessionState.IDLE)

    def overlay(self, display_width: float, display_height: float) -> list[OverlayItem]:
        """Project the latest detections onto the displayed video."""
        batch = self._latest
        if batch is None or self._state is not SessionState.ACTIVE:
            return []
        return self.projector.project_detections(
            batch.detections,
            batch.frame_width,
            batch.frame_height,
            display_width,
            display_height,
        )

    def summary(self) -> SessionSummary | None:
        """Summarize the current or last session."""
        if self._session is None:
            return None
        return build_summary(
            self._session,
            self.reconciler.roster,
            self.reconciler.attendance_log,
            self.clock(),
        )

    def on_batch(self, batch: ResultBatch) -> None:
        """Apply one result batch if it belongs to the running session."""
        stale = batch.generation != self._generation
        if stale or self._state is not SessionState.ACTIVE:
            self.on_warning(
                WarningKind.STALE_RESULT_DISCARDED,
                f"Result for frame {batch.sequence} from generation {batch.generation}",
            )
            return
        self._latest = batch
        outcome = self.reconciler.reconcile(batch.detections)
        if self.listener is not None:
            for record in outcome.new_records:
                self.listener.on_attendance(record)

    def on_warning(self, kind: WarningKind, message: str) -> None:
        """Record a transient warning."""
        warning = SessionWarning(kind=kind, message=message, raised_at=self.clock())
        self._warnings.append(warning)
        if self.listener is not None:
            self.listener.on_warning(warning)

    def on_connection_lost(self, cause: FailureCause, message: str) -> None:
        """Schedule a forced stop after the recognizer connection is lost."""
        self._schedule_failure(cause, message)

    def on_camera_lost(self, message: str) -> None:
        """Schedule a forced stop after the camera disappeared."""
        self._schedule_failure(FailureCause.CAMERA_LOST, message)

    def _schedule_failure(self, cause: FailureCause, message: str) -> None:
        if self._state is not SessionState.ACTIVE:
            return
        task = asyncio.get_running_loop().create_task(self._fail(cause, message))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _fail(self, cause: FailureCause, message: str) -> None:
        if self._state is not SessionState.ACTIVE:
            return
        _logger.error("Session failed: cause=%s %s", cause, message)
        self._generation += 1
        self._failure = cause
        self._transition(SessionState.STOPPING)
        await self._teardown()
        self._end_session()
        if self._state is not SessionState.STOPPING:
            return
        self._transition(SessionState.ERROR)
        await self._hand_off()

    async def _abort_start(self) -> None:
        self._generation += 1
        self._transition(SessionState.STOPPING)
        await self._teardown()
        if self._state is SessionState.STOPPING:
            self._transition(SessionState.IDLE)

    async def _teardown(self, acquisition: asyncio.Future | None = None) -> None:
        task = asyncio.ensure_future(self._settle_and_release(acquisition))
        self._teardown_task = task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._teardown_task is task:
                self._teardown_task = None

    async def _settle_and_release(self, acquisition: asyncio.Future | None) -> None:
        if acquisition is not None and not acquisition.done():
            _logger.info("Waiting for pending session start to settle")
            await asyncio.wait({acquisition})
        await self._release_resources()

    async def _release_resources(self) -> None:
        try:
            await self.sampler.stop()
        except Exception:
            _logger.exception("Failed to stop frame sampler")
        try:
            await self.transport.close()
        except Exception:
            _logger.exception("Failed to close recognition transport")
        try:
            self.video_source.release()
        except Exception:
            _logger.exception("Failed to release video source")

    async def _hand_off(self) -> None:
        if self.sink is None:
            return
        summary = self.summary()
        if summary is None:
            return
        try:
            await self.sink.submit(summary, self.reconciler.attendance_log)
        except Exception:
            _logger.exception(
                "Failed to hand off attendance log: session_id=%s", summary.session_id
            )

    def _end_session(self) -> None:
        if self._session is not None and self._session.ended_at is None:
            self._session.ended_at = self.clock()

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state} -> {target}")
        _logger.info("Session state: %s -> %s", self._state, target)
        self._state = target
        if self._session is not None:
            self._session.state = target
        if self.listener is not None:
            cause = self._failure if target is SessionState.ERROR else None
            self.listener.on_state_changed(target, cause)


def _acquisition_failure(
    camera_result: object, transport_result: object
) -> FailureCause | None:
    if isinstance(camera_result, CameraPermissionDeniedError):
        return FailureCause.CAMERA_DENIED
    # in-use and missing devices share one user-facing cause
    if isinstance(camera_result, BaseException):
        return FailureCause.CAMERA_UNAVAILABLE
    if isinstance(transport_result, BaseException):
        return FailureCause.CONNECTION_FAILED
    return None
