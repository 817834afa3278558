"""Connection to the remote recognizer."""

import asyncio
import contextlib
import json
import logging
import random
import time
from collections import OrderedDict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

import httpx
from pydantic import ValidationError

from facial_attendance.domain.errors import (
    ChannelClosedError,
    ChannelError,
    ConnectionFailedError,
)
from facial_attendance.domain.events import WarningKind
from facial_attendance.domain.recognition import (
    EncodedFrame,
    RecognitionMessage,
    ResultBatch,
)
from facial_attendance.domain.sessions import FailureCause
from facial_attendance.services.backoff import BackoffPolicy

_logger = logging.getLogger(__name__)

_FRAME_SIZE_HISTORY = 16


class ConnectionState(StrEnum):
    """Lifecycle of the recognizer connection."""

    CONNECTING = "Connecting"
    OPEN = "Open"
    CLOSED = "Closed"
    FAILED = "Failed"


class TransportMode(StrEnum):
    """How frames reach the recognizer for the whole session."""

    STREAMING = "Streaming"
    SINGLE_SHOT = "SingleShot"


class RecognitionChannel(Protocol):
    """A connected, message-framed streaming channel."""

    async def send(self, message: str) -> None:
        """Send one text message. Raises ChannelClosedError when closed."""

    async def receive(self) -> str:
        """Wait for the next message. Raises ChannelClosedError when closed."""

    async def close(self) -> None:
        """Close the channel."""


class ChannelConnector(Protocol):
    """Opens streaming channels scoped to one course."""

    async def connect(self, course_id: str) -> RecognitionChannel:
        """Open a channel or raise ChannelError."""


class SingleShotRecognizer(Protocol):
    """Request/response recognizer used when streaming is unavailable."""

    async def check_available(self) -> bool:
        """Return whether the recognizer accepts single-shot calls."""

    async def recognize(self, course_id: str, frame_data: str) -> dict[str, object]:
        """Submit one frame and return the raw response body."""


class TransportListener(Protocol):
    """Receives results and connection conditions from the transport."""

    def on_batch(self, batch: ResultBatch) -> None:
        """Handle the detections for one frame."""

    def on_warning(self, kind: WarningKind, message: str) -> None:
        """Handle a transient warning."""

    def on_connection_lost(self, cause: FailureCause, message: str) -> None:
        """Handle an unrecoverable connection failure."""


@dataclass
class _PendingFrame:
    sequence: int
    sent_at: float


@dataclass
class RecognitionTransport:
    """Sends frames and emits result batches correlated by sequence number.

    The mode is chosen once in `open`: a streaming channel when one can be
    established, otherwise single-shot requests. At most one frame is
    tracked as in flight; the sampler decides when to abandon it.
    """

    connector: ChannelConnector
    single_shot: SingleShotRecognizer
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    backend_error_threshold: int = 5
    backend_error_window_seconds: float = 10.0
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    rng: random.Random | None = None
    _state: ConnectionState = field(default=ConnectionState.CLOSED, init=False)
    _mode: TransportMode | None = field(default=None, init=False)
    _course_id: str = field(default="", init=False)
    _generation: int = field(default=0, init=False)
    _listener: TransportListener | None = field(default=None, init=False)
    _channel: RecognitionChannel | None = field(default=None, init=False)
    _receiver: asyncio.Task | None = field(default=None, init=False)
    _requests: set[asyncio.Task] = field(default_factory=set, init=False)
    _closing: bool = field(default=False, init=False)
    _next_sequence: int = field(default=0, init=False)
    _last_accepted: int = field(default=0, init=False)
    _pending: _PendingFrame | None = field(default=None, init=False)
    _frame_sizes: OrderedDict[int, tuple[int, int]] = field(
        default_factory=OrderedDict, init=False
    )
    _backend_errors: deque[float] = field(default_factory=deque, init=False)

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def mode(self) -> TransportMode | None:
        return self._mode

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    @property
    def in_flight_since(self) -> float | None:
        return None if self._pending is None else self._pending.sent_at

    async def open(
        self, course_id: str, generation: int, listener: TransportListener
    ) -> TransportMode:
        """Establish a usable channel for one session."""
        self._course_id = course_id
        self._generation = generation
        self._listener = listener
        self._closing = False
        self._pending = None
        self._last_accepted = self._next_sequence
        self._frame_sizes.clear()
        self._backend_errors.clear()
        self._state = ConnectionState.CONNECTING

        try:
            self._channel = await self.connector.connect(course_id)
        except ChannelError as exc:
            _logger.warning(
                "Streaming channel unavailable, trying single-shot: %s", exc
            )
        else:
            self._mode = TransportMode.STREAMING
            self._state = ConnectionState.OPEN
            self._receiver = asyncio.create_task(
                self._receive_loop(), name="recognition-receiver"
            )
            _logger.info("Recognition streaming channel open: course_id=%s", course_id)
            return self._mode

        try:
            available = await self.single_shot.check_available()
        except httpx.HTTPError as exc:
            _logger.warning("Single-shot recognizer probe failed: %s", exc)
            available = False
        if not available:
            self._state = ConnectionState.FAILED
            raise ConnectionFailedError("Recognizer is unreachable")

        self._mode = TransportMode.SINGLE_SHOT
        self._state = ConnectionState.OPEN
        _logger.info("Recognition single-shot mode: course_id=%s", course_id)
        return self._mode

    async def send(self, frame: EncodedFrame) -> int | None:
        """Submit one frame without waiting for its result."""
        if self._state is not ConnectionState.OPEN or self._closing:
            self._warn(WarningKind.FRAME_DROPPED, f"Channel not open ({self._state})")
            return None

        self._next_sequence += 1
        sequence = self._next_sequence
        self._pending = _PendingFrame(sequence=sequence, sent_at=self.clock())
        self._remember_size(sequence, frame)

        if self._mode is TransportMode.SINGLE_SHOT:
            task = asyncio.create_task(self._request(sequence, frame))
            self._requests.add(task)
            task.add_done_callback(self._requests.discard)
            return sequence

        payload = json.dumps({"frame_data": frame.data_url, "sequence": sequence})
        try:
            await self._channel.send(payload)
        except ChannelClosedError as exc:
            self._clear_pending(sequence)
            self._warn(WarningKind.FRAME_DROPPED, f"Send failed: {exc}")
            return None
        return sequence

    def abandon_in_flight(self) -> None:
        """Stop waiting for the outstanding frame; its late result may be dropped."""
        if self._pending is None:
            return
        sequence = self._pending.sequence
        self._pending = None
        self._warn(WarningKind.FRAME_DROPPED, f"No result for frame {sequence}")

    async def close(self) -> None:
        """Close the connection and cancel outstanding work. Idempotent."""
        self._closing = True
        self._pending = None
        tasks = [task for task in (self._receiver, *self._requests) if task is not None]
        self._receiver = None
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is not current:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        channel = self._channel
        self._channel = None
        if channel is not None:
            try:
                await channel.close()
            except ChannelError as exc:
                _logger.warning("Error closing recognition channel: %s", exc)
        if self._state is not ConnectionState.CLOSED:
            _logger.info("Recognition transport closed")
        self._state = ConnectionState.CLOSED

    async def _receive_loop(self) -> None:
        while not self._closing:
            channel = self._channel
            if channel is None:
                return
            try:
                raw = await channel.receive()
            except ChannelClosedError as exc:
                if self._closing:
                    return
                _logger.warning("Recognition channel closed unexpectedly: %s", exc)
                if not await self._reconnect():
                    return
                continue
            self._handle_raw(raw)

    async def _reconnect(self) -> bool:
        self._state = ConnectionState.CONNECTING
        self._pending = None
        attempts = self.backoff.max_attempts
        for attempt, delay in enumerate(self.backoff.delays(self.rng), start=1):
            await self.sleep(delay)
            if self._closing:
                return False
            try:
                self._channel = await self.connector.connect(self._course_id)
            except ChannelError as exc:
                self._warn(
                    WarningKind.RECONNECT_ATTEMPT_FAILED,
                    f"Reconnect attempt {attempt}/{attempts} failed: {exc}",
                )
                continue
            self._state = ConnectionState.OPEN
            _logger.info("Recognition channel reconnected after %s attempt(s)", attempt)
            return True

        self._state = ConnectionState.FAILED
        self._lose(f"Reconnection failed after {attempts} attempts")
        return False

    async def _request(self, sequence: int, frame: EncodedFrame) -> None:
        try:
            body = await self.single_shot.recognize(self._course_id, frame.data_url)
        except (httpx.HTTPError, ValueError) as exc:
            self._clear_pending(sequence)
            self._backend_error(f"Recognition request failed: {exc}")
            return
        self._handle_payload(body, sequence)

    def _handle_raw(self, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except ValueError:
            self._backend_error("Malformed recognizer message")
            return
        self._handle_payload(payload, None)

    def _handle_payload(self, payload: object, known_sequence: int | None) -> None:
        try:
            message = RecognitionMessage.model_validate(payload)
        except ValidationError as exc:
            self._backend_error(
                f"Invalid recognizer message: {exc.error_count()} error(s)"
            )
            return

        sequence = known_sequence
        if sequence is None:
            sequence = message.sequence
        if sequence is None and self._pending is not None:
            sequence = self._pending.sequence

        if message.error:
            if sequence is not None:
                self._clear_pending(sequence)
            self._backend_error(message.error)
            if message.results is None:
                return
        if message.results is None:
            return

        if sequence is None or sequence <= self._last_accepted:
            self._warn(
                WarningKind.STALE_RESULT_DISCARDED,
                f"Discarded result for frame {sequence}",
            )
            return

        self._last_accepted = sequence
        if self._pending is not None and self._pending.sequence <= sequence:
            self._pending = None
        width, height = self._frame_sizes.get(sequence, (0, 0))
        batch = ResultBatch(
            sequence=sequence,
            generation=self._generation,
            detections=message.results,
            frame_width=width,
            frame_height=height,
        )
        if self._listener is not None:
            self._listener.on_batch(batch)

    def _backend_error(self, message: str) -> None:
        now = self.clock()
        self._backend_errors.append(now)
        window_start = now - self.backend_error_window_seconds
        while self._backend_errors and self._backend_errors[0] < window_start:
            self._backend_errors.popleft()
        self._warn(WarningKind.BACKEND_ERROR, message)
        if len(self._backend_errors) >= self.backend_error_threshold:
            self._backend_errors.clear()
            self._state = ConnectionState.FAILED
            self._lose(f"Recognizer reported repeated errors: {message}")

    def _clear_pending(self, sequence: int) -> None:
        if self._pending is not None and self._pending.sequence == sequence:
            self._pending = None

    def _remember_size(self, sequence: int, frame: EncodedFrame) -> None:
        self._frame_sizes[sequence] = (frame.width, frame.height)
        while len(self._frame_sizes) > _FRAME_SIZE_HISTORY:
            self._frame_sizes.popitem(last=False)

    def _warn(self, kind: WarningKind, message: str) -> None:
        _logger.warning("%s: %s", kind, message)
        if self._listener is not None:
            self._listener.on_warning(kind, message)

    def _lose(self, message: str) -> None:
        _logger.error("Recognition connection lost: %s", message)
        if self._listener is not None and not self._closing:
            self._listener.on_connection_lost(FailureCause.CONNECTION_LOST, message)
