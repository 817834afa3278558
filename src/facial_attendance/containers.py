"""Dependency container wiring for the attendance client."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from facial_attendance.adapters.opencv_video_source import OpenCvVideoSource
from facial_attendance.adapters.recognition_http_client import HttpxRecognitionClient
from facial_attendance.adapters.websocket_channel import WebsocketChannelConnector
from facial_attendance.app_logging import configure_logging
from facial_attendance.config import Settings, resolve_result_timeout
from facial_attendance.services.backoff import BackoffPolicy
from facial_attendance.services.overlay import OverlayProjector
from facial_attendance.services.reconciler import RosterReconciler
from facial_attendance.services.sampler import FrameSampler
from facial_attendance.services.sessions import (
    AttendanceSink,
    SessionController,
    SessionListener,
)
from facial_attendance.services.transport import RecognitionTransport


@dataclass
class AppContainer:
    """Holds client-wide dependencies."""

    settings: Settings
    video_source: OpenCvVideoSource
    transport: RecognitionTransport
    sampler: FrameSampler
    reconciler: RosterReconciler
    projector: OverlayProjector
    session_controller: SessionController
    close_resources: Callable[[], Awaitable[None]]


def build_container(
    settings: Settings | None = None,
    sink: AttendanceSink | None = None,
    listener: SessionListener | None = None,
) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    configure_logging(resolved_settings.log_level)
    video_source = OpenCvVideoSource(
        camera_index=resolved_settings.camera_index,
        width=resolved_settings.camera_width,
        height=resolved_settings.camera_height,
    )
    connector = WebsocketChannelConnector(
        base_url=resolved_settings.recognizer_ws_url,
        token=resolved_settings.auth_token,
        open_timeout=resolved_settings.connect_timeout_seconds,
    )
    single_shot = HttpxRecognitionClient.create(
        base_url=resolved_settings.recognizer_http_url,
        token=resolved_settings.auth_token,
        timeout=resolved_settings.request_timeout_seconds,
    )
    transport = RecognitionTransport(
        connector=connector,
        single_shot=single_shot,
        backoff=BackoffPolicy(
            initial_delay_seconds=resolved_settings.reconnect_initial_delay_seconds,
            max_delay_seconds=resolved_settings.reconnect_max_delay_seconds,
            max_attempts=resolved_settings.reconnect_max_attempts,
        ),
        backend_error_threshold=resolved_settings.backend_error_threshold,
        backend_error_window_seconds=resolved_settings.backend_error_window_seconds,
    )
    sampler = FrameSampler(
        video_source=video_source,
        transport=transport,
        interval_seconds=resolved_settings.capture_interval_seconds,
        result_timeout_seconds=resolve_result_timeout(resolved_settings),
        max_frame_width=resolved_settings.max_frame_width,
        jpeg_quality=resolved_settings.jpeg_quality,
        failure_threshold=resolved_settings.capture_failure_threshold,
    )
    reconciler = RosterReconciler()
    projector = OverlayProjector(mirrored=resolved_settings.mirror_display)
    session_controller = SessionController(
        video_source=video_source,
        transport=transport,
        sampler=sampler,
        reconciler=reconciler,
        projector=projector,
        sink=sink,
        listener=listener,
    )

    async def close_resources() -> None:
        await session_controller.stop_session()
        await single_shot.close()

    return AppContainer(
        settings=resolved_settings,
        video_source=video_source,
        transport=transport,
        sampler=sampler,
        reconciler=reconciler,
        projector=projector,
        session_controller=session_controller,
        close_resources=close_resources,
    )
