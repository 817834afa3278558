"""OpenCV camera adapter."""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import cv2
import numpy as np

from facial_attendance.domain.errors import (
    CameraLostError,
    CameraPermissionDeniedError,
    CameraReadError,
    CameraUnavailableError,
)
from facial_attendance.services.sampler import VideoSource

_logger = logging.getLogger(__name__)


@dataclass
class OpenCvVideoSource(VideoSource):
    """Video source backed by `cv2.VideoCapture`.

    Device calls block, so they run in the default executor.

    OpenCV only reports whether a device opened. A device node that exists
    but cannot be opened by this user is reported as permission denied; a
    device held by another process cannot be told apart from a missing one
    and is reported as unavailable.
    """

    camera_index: int = 0
    width: int = 1280
    height: int = 720
    warmup_frames: int = 3
    lost_after_failures: int = 30
    device_root: str = "/dev"
    _capture: cv2.VideoCapture | None = field(default=None, init=False)
    _read_failures: int = field(default=0, init=False)

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    async def acquire(self) -> None:
        """Open the camera and wait for a decodable frame."""
        if self._capture is not None:
            return
        capture = await asyncio.to_thread(self._open)
        self._capture = capture
        self._read_failures = 0
        _logger.info("Camera %s acquired", self.camera_index)

    async def read_frame(self) -> np.ndarray | None:
        """Return the latest frame from the device."""
        capture = self._capture
        if capture is None:
            raise CameraReadError("Camera is not acquired")
        ok, frame = await asyncio.to_thread(capture.read)
        if not ok or frame is None:
            self._read_failures += 1
            if self._read_failures >= self.lost_after_failures:
                raise CameraLostError(
                    f"Camera {self.camera_index} stopped delivering frames"
                )
            raise CameraReadError("Failed to read frame from camera")
        self._read_failures = 0
        if frame.size == 0:
            return None
        return frame

    def release(self) -> None:
        """Release the device if it is open."""
        capture = self._capture
        self._capture = None
        if capture is None:
            return
        capture.release()
        _logger.info("Camera %s released", self.camera_index)

    def _open(self) -> cv2.VideoCapture:
        node = Path(self.device_root) / f"video{self.camera_index}"
        if node.exists() and not os.access(node, os.R_OK | os.W_OK):
            raise CameraPermissionDeniedError(f"No permission to open {node}")
        capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailableError(
                f"Camera {self.camera_index} could not be opened"
            )
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        for _ in range(max(1, self.warmup_frames)):
            ok, frame = capture.read()
            if ok and frame is not None:
                return capture
        capture.release()
        raise CameraUnavailableError(f"Camera {self.camera_index} produced no frames")
