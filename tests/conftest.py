"""Shared test fixtures."""

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import numpy as np
import pytest

from facial_attendance.config import Settings
from facial_attendance.domain.attendance import (
    AttendanceRecord,
    EnrolledStudent,
    SessionSummary,
)
from facial_attendance.domain.errors import ChannelClosedError, ChannelError
from facial_attendance.domain.events import SessionWarning, WarningKind
from facial_attendance.domain.recognition import EncodedFrame, ResultBatch
from facial_attendance.domain.sessions import FailureCause, SessionState
from facial_attendance.services.backoff import BackoffPolicy
from facial_attendance.services.overlay import OverlayProjector
from facial_attendance.services.reconciler import RosterReconciler
from facial_attendance.services.sampler import FrameSampler, VideoSource
from facial_attendance.services.sessions import (
    AttendanceSink,
    SessionController,
    SessionListener,
)
from facial_attendance.services.transport import (
    ChannelConnector,
    RecognitionChannel,
    RecognitionTransport,
    SingleShotRecognizer,
)

ROSTER = [
    EnrolledStudent(student_id="S1", display_name="Ada Obi"),
    EnrolledStudent(student_id="S2", display_name="Bola Ade"),
]


def detection(
    student_id: str | None,
    confidence: float | None = 0.9,
    recognized: bool = True,
    box: list[float] | None = None,
) -> dict[str, object]:
    """Build a wire-format detection."""
    return {
        "recognized": recognized,
        "student_id": student_id,
        "name": student_id or "Unknown",
        "confidence": confidence,
        "bounding_box": box or [100, 50, 300, 150],
        "message": "Recognized" if recognized else "Face not recognized",
    }


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(condition: Callable[[], bool], rounds: int = 200) -> None:
    """Yield to the loop until a condition holds."""
    for _ in range(rounds):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@dataclass
class FakeClock:
    """Manually advanced monotonic clock."""

    now: float = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class StepClock:
    """Wall clock that moves forward one second per reading."""

    current: datetime = field(
        default_factory=lambda: datetime(2024, 3, 4, 9, 0, tzinfo=UTC)
    )

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@dataclass
class RecordingSleep:
    """Sleep that returns at once and records the requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def blocking_sleep(delay: float) -> None:
    """Sleep until cancelled."""
    await asyncio.Event().wait()


def fake_encoder(frame: np.ndarray, max_width: int, quality: int) -> EncodedFrame:
    height, width = frame.shape[:2]
    return EncodedFrame(
        data_url="data:image/jpeg;base64,ZmFrZQ==", width=width, height=height
    )


@dataclass
class FakeVideoSource(VideoSource):
    """Camera fake with scripted frames and failures."""

    acquire_error: Exception | None = None
    read_errors: list[Exception] = field(default_factory=list)
    frames: list[np.ndarray | None] = field(default_factory=list)
    gate: asyncio.Event | None = None
    acquired: int = 0
    released: int = 0
    reads: int = 0

    async def acquire(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired += 1

    async def read_frame(self) -> np.ndarray | None:
        self.reads += 1
        if self.read_errors:
            raise self.read_errors.pop(0)
        if self.frames:
            return self.frames.pop(0)
        return np.zeros((360, 640, 3), dtype=np.uint8)

    def release(self) -> None:
        self.released += 1


@dataclass
class FakeChannel(RecognitionChannel):
    """In-memory streaming channel."""

    sent: list[dict[str, object]] = field(default_factory=list)
    closed: bool = False
    _inbox: asyncio.Queue = field(default_factory=asyncio.Queue)

    def push(self, message: dict[str, object] | str) -> None:
        raw = message if isinstance(message, str) else json.dumps(message)
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        self._inbox.put_nowait(None)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ChannelClosedError("closed")
        self.sent.append(json.loads(message))

    async def receive(self) -> str:
        raw = await self._inbox.get()
        if raw is None:
            self.closed = True
            raise ChannelClosedError("connection dropped")
        return raw

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeConnector(ChannelConnector):
    """Hands out prepared channels, failing once they run out."""

    channels: list[FakeChannel] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    gate: asyncio.Event | None = None

    async def connect(self, course_id: str) -> FakeChannel:
        self.calls.append(course_id)
        if self.gate is not None:
            await self.gate.wait()
        if not self.channels:
            raise ChannelError("connection refused")
        return self.channels.pop(0)


@dataclass
class FakeSingleShot(SingleShotRecognizer):
    """Single-shot recognizer returning queued bodies."""

    available: bool = True
    responses: list[dict[str, object] | Exception] = field(default_factory=list)
    calls: list[tuple[str, str]] = field(default_factory=list)

    async def check_available(self) -> bool:
        return self.available

    async def recognize(self, course_id: str, frame_data: str) -> dict[str, object]:
        self.calls.append((course_id, frame_data))
        if not self.responses:
            return {"results": []}
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@dataclass
class RecordingTransportListener:
    """Collects everything the transport reports."""

    batches: list[ResultBatch] = field(default_factory=list)
    warnings: list[tuple[WarningKind, str]] = field(default_factory=list)
    lost: list[tuple[FailureCause, str]] = field(default_factory=list)
    camera_lost: list[str] = field(default_factory=list)

    def on_batch(self, batch: ResultBatch) -> None:
        self.batches.append(batch)

    def on_warning(self, kind: WarningKind, message: str) -> None:
        self.warnings.append((kind, message))

    def on_connection_lost(self, cause: FailureCause, message: str) -> None:
        self.lost.append((cause, message))

    def on_camera_lost(self, message: str) -> None:
        self.camera_lost.append(message)

    def kinds(self) -> list[WarningKind]:
        return [kind for kind, _ in self.warnings]


@dataclass
class RecordingSessionListener(SessionListener):
    """Collects user-facing session events."""

    states: list[tuple[SessionState, FailureCause | None]] = field(default_factory=list)
    warnings: list[SessionWarning] = field(default_factory=list)
    records: list[AttendanceRecord] = field(default_factory=list)

    def on_state_changed(self, state: SessionState, cause: FailureCause | None) -> None:
        self.states.append((state, cause))

    def on_warning(self, warning: SessionWarning) -> None:
        self.warnings.append(warning)

    def on_attendance(self, record: AttendanceRecord) -> None:
        self.records.append(record)


@dataclass
class InMemoryAttendanceSink(AttendanceSink):
    """Stores handed-off sessions."""

    submissions: list[tuple[SessionSummary, list[AttendanceRecord]]] = field(
        default_factory=list
    )
    fail: bool = False

    async def submit(
        self, summary: SessionSummary, records: list[AttendanceRecord]
    ) -> None:
        if self.fail:
            raise RuntimeError("storage offline")
        self.submissions.append((summary, records))


@dataclass
class Harness:
    """A controller wired to fakes."""

    controller: SessionController
    video: FakeVideoSource
    connector: FakeConnector
    single_shot: FakeSingleShot
    transport: RecognitionTransport
    sampler: FrameSampler
    sink: InMemoryAttendanceSink
    listener: RecordingSessionListener
    reconnect_sleep: RecordingSleep

    @property
    def channel(self) -> FakeChannel:
        return self.transport._channel  # type: ignore[return-value]


def build_harness(  # noqa: PLR0913
    video: FakeVideoSource | None = None,
    channels: int = 1,
    single_shot_available: bool = True,
    max_attempts: int = 3,
    backend_error_threshold: int = 5,
    clock: StepClock | None = None,
) -> Harness:
    """Wire a controller with fakes; must be called inside a running loop."""
    video = video or FakeVideoSource()
    connector = FakeConnector(channels=[FakeChannel() for _ in range(channels)])
    single_shot = FakeSingleShot(available=single_shot_available)
    reconnect_sleep = RecordingSleep()
    transport = RecognitionTransport(
        connector=connector,
        single_shot=single_shot,
        backoff=BackoffPolicy(max_attempts=max_attempts),
        backend_error_threshold=backend_error_threshold,
        sleep=reconnect_sleep,
    )
    sampler = FrameSampler(
        video_source=video,
        transport=transport,
        result_timeout_seconds=1000.0,
        encoder=fake_encoder,
        sleep=blocking_sleep,
    )
    wall_clock = clock or StepClock()
    sink = InMemoryAttendanceSink()
    listener = RecordingSessionListener()
    controller = SessionController(
        video_source=video,
        transport=transport,
        sampler=sampler,
        reconciler=RosterReconciler(clock=wall_clock),
        projector=OverlayProjector(mirrored=True),
        sink=sink,
        listener=listener,
        clock=wall_clock,
    )
    return Harness(
        controller=controller,
        video=video,
        connector=connector,
        single_shot=single_shot,
        transport=transport,
        sampler=sampler,
        sink=sink,
        listener=listener,
        reconnect_sleep=reconnect_sleep,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        auth_token="test-token",
        recognizer_http_url="http://recognizer.test/api/v1",
        recognizer_ws_url="ws://recognizer.test/api/v1/recognition/ws",
    )
