"""Overlay geometry in display space."""

from dataclasses import dataclass


@dataclass(frozen=True)
class OverlayBox:
    """Rectangle in display pixels."""

    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class OverlayItem:
    """A projected detection ready for rendering."""

    box: OverlayBox
    label: str
    recognized: bool
