"""Projection of backend bounding boxes onto the displayed video."""

from dataclasses import dataclass

from facial_attendance.domain.overlay import OverlayBox, OverlayItem
from facial_attendance.domain.recognition import RecognitionDetection


@dataclass
class OverlayProjector:
    """Maps frame-pixel boxes to display coordinates.

    Boxes arrive in the pixel space of the frame the recognizer processed.
    The displayed element may be scaled differently on each axis and, for a
    selfie view, mirrored horizontally. Nothing is cached: display size
    changes with layout, so callers project on every render.
    """

    mirrored: bool = True

    def project(  # noqa: PLR0913
        self,
        box: tuple[float, float, float, float] | list[float],
        frame_width: int,
        frame_height: int,
        display_width: float,
        display_height: float,
    ) -> OverlayBox | None:
        """Project one box, or return None while the video has no size."""
        if frame_width <= 0 or frame_height <= 0:
            return None
        x1, y1, x2, y2 = box
        scale_x = display_width / frame_width
        scale_y = display_height / frame_height
        width = (x2 - x1) * scale_x
        height = (y2 - y1) * scale_y
        left = x1 * scale_x
        if self.mirrored:
            left = display_width - left - width
        return OverlayBox(left=left, top=y1 * scale_y, width=width, height=height)

    def project_detections(  # noqa: PLR0913
        self,
        detections: list[RecognitionDetection],
        frame_width: int,
        frame_height: int,
        display_width: float,
        display_height: float,
    ) -> list[OverlayItem]:
        """Project every detection of one frame with its label."""
        items: list[OverlayItem] = []
        for detection in detections:
            box = self.project(
                detection.bounding_box,
                frame_width,
                frame_height,
                display_width,
                display_height,
            )
            if box is None:
                continue
            items.append(
                OverlayItem(
                    box=box,
                    label=_label(detection),
                    recognized=detection.recognized,
                )
            )
        return items


def _label(detection: RecognitionDetection) -> str:
    if detection.recognized and detection.display_name:
        if isinstance(detection.confidence, int | float):
            return f"{detection.display_name} ({detection.confidence:.0%})"
        return detection.display_name
    return detection.message or "Unknown"
