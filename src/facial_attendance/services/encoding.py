"""Frame downsampling and JPEG encoding."""

import base64

import cv2
import numpy as np

from facial_attendance.domain.errors import FrameEncodingError
from facial_attendance.domain.recognition import EncodedFrame


def encode_frame(
    frame: np.ndarray, max_width: int, quality: int
) -> EncodedFrame | None:
    """Downsample and JPEG-encode a frame, or return None for an empty one."""
    if frame is None or frame.size == 0:
        return None
    height, width = frame.shape[:2]
    if width == 0 or height == 0:
        return None

    if max_width > 0 and width > max_width:
        scale = max_width / width
        target = (max_width, max(1, round(height * scale)))
        frame = cv2.resize(frame, target, interpolation=cv2.INTER_AREA)
        height, width = frame.shape[:2]

    quality = min(100, max(1, quality))
    try:
        params = [int(cv2.IMWRITE_JPEG_QUALITY), quality]
        ok, buffer = cv2.imencode(".jpg", frame, params)
    except cv2.error as exc:
        raise FrameEncodingError(str(exc)) from exc
    if not ok:
        raise FrameEncodingError("JPEG encoder rejected the frame")
    return EncodedFrame(
        data_url=_to_data_url(buffer.tobytes()),
        width=int(width),
        height=int(height),
    )


def _to_data_url(image_bytes: bytes) -> str:
    """Convert JPEG bytes to a base64 data URL."""
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:image/jpeg;base64,{encoded}"
