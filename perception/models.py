"""
Shared data models and the unified results schema for all capabilities.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

import numpy as np


class Capability(str, Enum):
    """One independently toggled detector kind."""

    FACE = "face"
    HAND = "hand"
    BODY = "body"
    OBJECT = "object"

    @property
    def display_name(self) -> str:
        return {
            Capability.FACE: "Face Mesh",
            Capability.HAND: "Hand Pose",
            Capability.BODY: "Body Pose",
            Capability.OBJECT: "Object Detector",
        }[self]


@dataclass(frozen=True)
class VideoFrame:
    """Current camera image (BGR) plus its size and capture time."""

    image: np.ndarray
    width: int
    height: int
    timestamp_ms: float
    index: int = 0

    @classmethod
    def from_image(cls, image: np.ndarray, timestamp_ms: float, index: int = 0) -> VideoFrame:
        h, w = image.shape[:2]
        return cls(image=image, width=int(w), height=int(h), timestamp_ms=timestamp_ms, index=index)


@dataclass(frozen=True)
class LandmarkSet:
    """Ordered points of one tracked subject, in video-pixel coordinates."""

    points: np.ndarray  # (N, 2) or (N, 3)
    confidence: np.ndarray | None = None  # (N,)
    score: float = 1.0
    label: str = ""

    def __len__(self) -> int:
        return int(self.points.shape[0])

    def to_dict(self) -> dict[str, Any]:
        pts = []
        for i, p in enumerate(self.points):
            item = {"x": float(p[0]), "y": float(p[1])}
            if len(p) > 2:
                item["z"] = float(p[2])
            if self.confidence is not None:
                item["confidence"] = float(self.confidence[i])
            pts.append(item)
        return {"score": self.score, "label": self.label, "keypoints": pts}


@dataclass(frozen=True)
class LandmarkDetection:
    """A landmark set plus its normalized feature vector (None when invalid)."""

    landmarks: LandmarkSet
    features: np.ndarray | None = None

    def to_dict(self) -> dict[str, Any]:
        out = self.landmarks.to_dict()
        out["features"] = None if self.features is None else [float(v) for v in self.features]
        return out


@dataclass(frozen=True)
class BoundingBoxDetection:
    """One object box in video-pixel coordinates (top-left origin)."""

    x: float
    y: float
    width: float
    height: float
    label: str
    class_id: int
    confidence: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "class_id": self.class_id,
            "confidence": self.confidence,
            "bbox": {"x": self.x, "y": self.y, "width": self.width, "height": self.height},
        }


Detection = Union[LandmarkDetection, BoundingBoxDetection]

# Type alias for the unified results dict shown in the UI and exported as JSON
UnifiedResults = dict[str, Any]


def unified_results_schema(
    capability: str,
    timestamp_ms: float,
    detections: list[Any] | None = None,
    landmarks: list[Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> UnifiedResults:
    """Build a results dict that conforms to the unified schema."""
    return {
        "capability": capability,
        "timestamp_ms": timestamp_ms,
        "detections": detections if detections is not None else [],
        "landmarks": landmarks if landmarks is not None else [],
        "metadata": metadata if metadata is not None else {},
    }


def results_to_schema(
    capability: Capability, results: tuple[Detection, ...], timestamp_ms: float, **metadata: Any
) -> UnifiedResults:
    """Split typed results into the detections / landmarks lists of the schema."""
    boxes = [r.to_dict() for r in results if isinstance(r, BoundingBoxDetection)]
    marks = [r.to_dict() for r in results if isinstance(r, LandmarkDetection)]
    meta: dict[str, Any] = {"count": len(results)}
    meta.update(metadata)
    return unified_results_schema(capability.value, timestamp_ms, boxes, marks, meta)


@dataclass
class FrameResults:
    """Everything the sink painted for one display tick."""

    frame: VideoFrame
    image: np.ndarray
    results: dict[str, UnifiedResults] = field(default_factory=dict)
