"""Periodic frame capture with backpressure against slow recognition."""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

import numpy as np

from facial_attendance.domain.errors import CameraError, CameraLostError
from facial_attendance.domain.events import WarningKind
from facial_attendance.domain.recognition import EncodedFrame
from facial_attendance.services.encoding import encode_frame

_logger = logging.getLogger(__name__)


class VideoSource(Protocol):
    """Interface for the camera device handle."""

    async def acquire(self) -> None:
        """Open the device and wait for a first decodable frame."""

    async def read_frame(self) -> np.ndarray | None:
        """Return the current frame, or None if none is decodable yet."""

    def release(self) -> None:
        """Release the device. Safe to call repeatedly."""


class FrameTransport(Protocol):
    """The part of the recognition transport the sampler drives."""

    @property
    def in_flight(self) -> bool:
        """Whether a frame's result is outstanding."""

    @property
    def in_flight_since(self) -> float | None:
        """Clock reading when the outstanding frame was sent."""

    def abandon_in_flight(self) -> None:
        """Give up on the outstanding frame."""

    async def send(self, frame: EncodedFrame) -> int | None:
        """Send a frame and return its sequence number, or None if dropped."""


class SamplerListener(Protocol):
    """Receives conditions the sampler cannot resolve on its own."""

    def on_warning(self, kind: WarningKind, message: str) -> None:
        """Handle a transient warning."""

    def on_camera_lost(self, message: str) -> None:
        """Handle unrecoverable loss of the camera."""


class TickOutcome(StrEnum):
    """What a single capture tick did."""

    SENT = "Sent"
    SKIPPED_IN_FLIGHT = "SkippedInFlight"
    NO_FRAME = "NoFrame"
    CAPTURE_FAILED = "CaptureFailed"
    DROPPED = "Dropped"
    CAMERA_LOST = "CameraLost"


Encoder = Callable[[np.ndarray, int, int], EncodedFrame | None]


@dataclass
class FrameSampler:
    """Captures one frame per period while at most one is in flight."""

    video_source: VideoSource
    transport: FrameTransport
    interval_seconds: float = 1.5
    result_timeout_seconds: float = 1.5
    max_frame_width: int = 640
    jpeg_quality: int = 80
    failure_threshold: int = 3
    encoder: Encoder = encode_frame
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _listener: SamplerListener | None = field(default=None, init=False)
    _task: asyncio.Task | None = field(default=None, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _stall_reported: bool = field(default=False, init=False)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def start(self, listener: SamplerListener | None = None) -> None:
        """Begin ticking on the running event loop."""
        if self.running:
            return
        self._listener = listener
        self._consecutive_failures = 0
        self._stall_reported = False
        self._task = asyncio.create_task(self._run(), name="frame-sampler")

    async def stop(self) -> None:
        """Cancel the capture loop. Safe to call repeatedly."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            started = self.clock()
            outcome = await self.tick()
            if outcome is TickOutcome.CAMERA_LOST:
                return
            elapsed = self.clock() - started
            await self.sleep(max(0.0, self.interval_seconds - elapsed))

    async def tick(self) -> TickOutcome:
        """Capture and send one frame unless a result is still pending."""
        if self.transport.in_flight:
            since = self.transport.in_flight_since
            if since is not None and self.clock() - since < self.result_timeout_seconds:
                return TickOutcome.SKIPPED_IN_FLIGHT
            self.transport.abandon_in_flight()

        try:
            raw = await self.video_source.read_frame()
            frame = None if raw is None else self.encoder(
                raw, self.max_frame_width, self.jpeg_quality
            )
        except CameraLostError as exc:
            _logger.error("Camera lost: %s", exc)
            if self._listener is not None:
                self._listener.on_camera_lost(str(exc))
            return TickOutcome.CAMERA_LOST
        except CameraError as exc:
            _logger.warning("Frame capture failed: %s", exc)
            self._record_miss()
            return TickOutcome.CAPTURE_FAILED

        if frame is None:
            self._record_miss()
            return TickOutcome.NO_FRAME

        self._consecutive_failures = 0
        self._stall_reported = False
        sequence = await self.transport.send(frame)
        if sequence is None:
            return TickOutcome.DROPPED
        return TickOutcome.SENT

    def _record_miss(self) -> None:
        self._consecutive_failures += 1
        if self._stall_reported or self._consecutive_failures < self.failure_threshold:
            return
        self._stall_reported = True
        message = (
            f"No frame captured for {self._consecutive_failures} consecutive ticks"
        )
        _logger.warning("Camera stalled: %s", message)
        if self._listener is not None:
            self._listener.on_warning(WarningKind.CAMERA_STALLED, message)
