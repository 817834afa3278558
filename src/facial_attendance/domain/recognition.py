"""Models exchanged with the remote recognizer."""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


class RecognitionDetection(BaseModel):
    """Single face detection from one processed frame."""

    model_config = ConfigDict(populate_by_name=True)

    recognized: bool = False
    student_id: str | None = None
    display_name: str | None = Field(default=None, alias="name")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    bounding_box: list[float] = Field(min_length=4, max_length=4)
    message: str | None = None


class RecognitionMessage(BaseModel):
    """Recognizer reply for one frame."""

    results: list[RecognitionDetection] | None = None
    error: str | None = None
    sequence: int | None = None


@dataclass(frozen=True)
class EncodedFrame:
    """Compressed still image ready for transport."""

    data_url: str
    width: int
    height: int


@dataclass(frozen=True)
class ResultBatch:
    """Detections for one submitted frame."""

    sequence: int
    generation: int
    detections: list[RecognitionDetection]
    frame_width: int
    frame_height: int
