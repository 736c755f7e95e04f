"""
Generic object-detector preprocessing and output decoding.

Preprocessing resizes the frame into the model input (letterbox by default) and
records the exact scale and padding so that decoding can map boxes back into
video-pixel coordinates.

Decoding accepts one raw output tensor whose layout is not known up front.
The layout is picked by an ordered list of sniffers (see ``register_layout``):

* ``PrefilteredLayout`` - rows of ``[x1, y1, x2, y2, confidence, class_id]``
  already filtered by the model; only threshold and class bounds are applied.
* ``ChannelsFirstLayout`` - ``[1, attributes, boxes]`` (YOLOv8 style).
* ``ChannelsLastLayout`` - ``[1, boxes, attributes]`` or ``[boxes, attributes]``
  (YOLOv5 style, with an objectness column).

Unrecognized shapes decode to an empty list.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, ClassVar, Sequence, Union

import cv2
import numpy as np

from perception.models import BoundingBoxDetection

logger = logging.getLogger(__name__)

DEFAULT_LABELS: tuple[str, ...] = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train",
    "truck", "boat", "traffic light", "fire hydrant", "stop sign",
    "parking meter", "bench", "bird", "cat", "dog", "horse", "sheep",
    "cow", "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella",
    "handbag", "tie", "suitcase", "frisbee", "skis", "snowboard",
    "sports ball", "kite", "baseball bat", "baseball glove", "skateboard",
    "surfboard", "tennis racket", "bottle", "wine glass", "cup", "fork",
    "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair",
    "couch", "potted plant", "bed", "dining table", "toilet", "tv",
    "laptop", "mouse", "remote", "keyboard", "cell phone", "microwave",
    "oven", "toaster", "sink", "refrigerator", "book", "clock", "vase",
    "scissors", "teddy bear", "hair drier", "toothbrush",
)

DEFAULT_INPUT_WIDTH = 640
DEFAULT_INPUT_HEIGHT = 640
# Boxes whose largest coordinate is at most this are taken as 0..1 normalized.
NORMALIZED_COORD_LIMIT = 1.5


# ---------------------------------------------------------------- preprocessing


@dataclass(frozen=True)
class InputSpec:
    width: int = DEFAULT_INPUT_WIDTH
    height: int = DEFAULT_INPUT_HEIGHT
    layout: str = "NCHW"


def resolve_input_spec(
    shape: Sequence[object] | None,
    width: int | None = None,
    height: int | None = None,
    layout: str | None = None,
) -> InputSpec:
    """Input size and channel layout from a model's declared input shape.

    Dynamic dimensions (None, symbolic names, -1) are ignored. Explicit
    ``width`` / ``height`` / ``layout`` always win.
    """
    dims = [d if isinstance(d, int) and d > 0 else None for d in (shape or [])]
    w, h, lay = DEFAULT_INPUT_WIDTH, DEFAULT_INPUT_HEIGHT, "NCHW"
    if len(dims) == 4:
        _, d1, d2, d3 = dims
        if d1 == 3 and d2 and d3:
            h, w = d2, d3
        elif d3 == 3 and d1 and d2:
            lay = "NHWC"
            h, w = d1, d2
        elif d2 and d3:
            h, w = d2, d3
    return InputSpec(
        width=int(width or w),
        height=int(height or h),
        layout=(layout or lay).upper(),
    )


@dataclass(frozen=True)
class PreprocessMeta:
    """How a frame was mapped into the model input: ``input = frame * scale + pad``."""

    frame_width: int
    frame_height: int
    input_width: int
    input_height: int
    scale_x: float
    scale_y: float
    pad_x: float = 0.0
    pad_y: float = 0.0
    letterboxed: bool = True

    @classmethod
    def identity(cls, width: int, height: int) -> PreprocessMeta:
        return cls(width, height, width, height, 1.0, 1.0, 0.0, 0.0, True)

    def forward(self, x: float, y: float) -> tuple[float, float]:
        return x * self.scale_x + self.pad_x, y * self.scale_y + self.pad_y

    def inverse(self, x: float, y: float) -> tuple[float, float]:
        return (x - self.pad_x) / self.scale_x, (y - self.pad_y) / self.scale_y


def compute_preprocess(
    frame_width: int, frame_height: int, spec: InputSpec, letterbox: bool = True
) -> PreprocessMeta:
    if frame_width <= 0 or frame_height <= 0:
        raise ValueError(f"invalid frame size {frame_width}x{frame_height}")
    if not letterbox:
        return PreprocessMeta(
            frame_width,
            frame_height,
            spec.width,
            spec.height,
            spec.width / frame_width,
            spec.height / frame_height,
            0.0,
            0.0,
            False,
        )
    ratio = min(spec.width / frame_width, spec.height / frame_height)
    new_w = min(spec.width, round(frame_width * ratio))
    new_h = min(spec.height, round(frame_height * ratio))
    pad_x = (spec.width - new_w) // 2
    pad_y = (spec.height - new_h) // 2
    return PreprocessMeta(
        frame_width, frame_height, spec.width, spec.height, ratio, ratio, float(pad_x), float(pad_y), True
    )


def letterbox(
    image: np.ndarray, spec: InputSpec, enabled: bool = True
) -> tuple[np.ndarray, PreprocessMeta]:
    """Resize ``image`` into ``spec`` (aspect-preserving black padding when enabled)."""
    h, w = image.shape[:2]
    meta = compute_preprocess(w, h, spec, enabled)
    if not enabled:
        resized = cv2.resize(image, (spec.width, spec.height), interpolation=cv2.INTER_LINEAR)
        return resized, meta
    new_w = min(spec.width, round(w * meta.scale_x))
    new_h = min(spec.height, round(h * meta.scale_y))
    resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
    canvas = np.zeros((spec.height, spec.width) + image.shape[2:], dtype=image.dtype)
    px, py = int(meta.pad_x), int(meta.pad_y)
    canvas[py : py + new_h, px : px + new_w] = resized
    return canvas, meta


def to_input_tensor(image_bgr: np.ndarray, layout: str = "NCHW") -> np.ndarray:
    """BGR uint8 image -> float32 RGB in [0, 1], batched in the given layout."""
    rgb = cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB).astype(np.float32) / 255.0
    if layout.upper() == "NHWC":
        return np.ascontiguousarray(rgb[np.newaxis, ...])
    return np.ascontiguousarray(rgb.transpose(2, 0, 1)[np.newaxis, ...])


# ---------------------------------------------------------------- tensor layouts


@dataclass(frozen=True)
class PrefilteredLayout:
    num_boxes: int
    kind: ClassVar[str] = "prefiltered"

    def rows(self, tensor: np.ndarray) -> np.ndarray:
        return tensor.reshape(-1)[: self.num_boxes * 6].reshape(self.num_boxes, 6)


@dataclass(frozen=True)
class ChannelsFirstLayout:
    num_attrs: int
    num_boxes: int
    kind: ClassVar[str] = "channels_first"

    def rows(self, tensor: np.ndarray) -> np.ndarray:
        count = self.num_attrs * self.num_boxes
        return tensor.reshape(-1)[:count].reshape(self.num_attrs, self.num_boxes).T


@dataclass(frozen=True)
class ChannelsLastLayout:
    num_boxes: int
    num_attrs: int
    kind: ClassVar[str] = "channels_last"

    def rows(self, tensor: np.ndarray) -> np.ndarray:
        count = self.num_attrs * self.num_boxes
        return tensor.reshape(-1)[:count].reshape(self.num_boxes, self.num_attrs)


TensorLayout = Union[PrefilteredLayout, ChannelsFirstLayout, ChannelsLastLayout]
LayoutSniffer = Callable[[tuple[int, ...], int], Union[TensorLayout, None]]


def _sniff_prefiltered(shape: tuple[int, ...], size: int) -> TensorLayout | None:
    if len(shape) == 3 and shape[0] == 1 and shape[2] == 6 and shape[1] > 0:
        return PrefilteredLayout(shape[1])
    if len(shape) == 2 and shape[1] == 6 and shape[0] > 0:
        return PrefilteredLayout(shape[0])
    return None


def _sniff_generic(shape: tuple[int, ...], size: int) -> TensorLayout | None:
    if len(shape) == 3:
        d1, d2 = shape[1], shape[2]
        if not d1 or not d2:
            return None
        # Boxes outnumber attributes in every real detector head.
        if d1 < d2:
            return ChannelsFirstLayout(num_attrs=d1, num_boxes=d2)
        return ChannelsLastLayout(num_boxes=d1, num_attrs=d2)
    if len(shape) == 2 and shape[0] and shape[1]:
        return ChannelsLastLayout(num_boxes=shape[0], num_attrs=shape[1])
    return None


def _sniff_flat(shape: tuple[int, ...], size: int) -> TensorLayout | None:
    for attrs in (85, 84, 6):
        if size and size % attrs == 0:
            return ChannelsLastLayout(num_boxes=size // attrs, num_attrs=attrs)
    return None


_SNIFFERS: list[LayoutSniffer] = [_sniff_prefiltered, _sniff_generic, _sniff_flat]


def register_layout(sniffer: LayoutSniffer) -> None:
    """Add a layout sniffer; it is tried before the built-in ones."""
    _SNIFFERS.insert(0, sniffer)


def infer_layout(shape: Sequence[int]) -> TensorLayout | None:
    dims = tuple(int(d) for d in shape)
    size = math.prod(dims) if dims else 0
    if size == 0:
        return None
    for sniffer in _SNIFFERS:
        layout = sniffer(dims, size)
        if layout is not None:
            return layout
    return None


# ---------------------------------------------------------------- NMS


def iou(a: Sequence[float], b: Sequence[float]) -> float:
    """Intersection over union of two ``[x1, y1, x2, y2]`` boxes (0 when union <= 0)."""
    ax1, ay1, ax2, ay2 = a[:4]
    bx1, by1, bx2, by2 = b[:4]
    inter = max(0.0, min(ax2, bx2) - max(ax1, bx1)) * max(0.0, min(ay2, by2) - max(ay1, by1))
    area_a = max(0.0, ax2 - ax1) * max(0.0, ay2 - ay1)
    area_b = max(0.0, bx2 - bx1) * max(0.0, by2 - by1)
    union = area_a + area_b - inter
    return 0.0 if union <= 0 else float(inter / union)


def _iou_one_to_many(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    iw = np.clip(np.minimum(box[2], others[:, 2]) - np.maximum(box[0], others[:, 0]), 0, None)
    ih = np.clip(np.minimum(box[3], others[:, 3]) - np.maximum(box[1], others[:, 1]), 0, None)
    inter = iw * ih
    area = max(0.0, box[2] - box[0]) * max(0.0, box[3] - box[1])
    areas = np.clip(others[:, 2] - others[:, 0], 0, None) * np.clip(others[:, 3] - others[:, 1], 0, None)
    union = area + areas - inter
    return np.divide(inter, union, out=np.zeros_like(inter, dtype=np.float64), where=union > 0)


def non_max_suppression(boxes: np.ndarray, scores: np.ndarray, threshold: float = 0.45) -> list[int]:
    """Greedy NMS. Returns kept indices, highest score first."""
    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    order = np.argsort(-scores, kind="stable")
    keep: list[int] = []
    while order.size > 0:
        current = int(order[0])
        keep.append(current)
        rest = order[1:]
        if rest.size == 0:
            break
        overlaps = _iou_one_to_many(boxes[current], boxes[rest])
        order = rest[overlaps < threshold]
    return keep


# ---------------------------------------------------------------- decoding


def parse_labels(text: str) -> list[str]:
    """One label per line; blank lines ignored. Empty input gives the default list."""
    labels = [line.strip() for line in text.splitlines() if line.strip()]
    return labels or list(DEFAULT_LABELS)


def load_labels(path: str | Path) -> list[str]:
    return parse_labels(Path(path).read_text(encoding="utf-8"))


@dataclass
class ObjectDecoder:
    """Turns one raw detector output into boxes in video-pixel space."""

    labels: Sequence[str] = field(default_factory=lambda: list(DEFAULT_LABELS))
    confidence_threshold: float = 0.25
    iou_threshold: float = 0.45

    def label_for(self, class_id: int) -> str:
        if 0 <= class_id < len(self.labels):
            return self.labels[class_id]
        return f"class_{class_id}"

    def uses_objectness(self, num_attrs: int) -> bool:
        # Ambiguous fits resolve to "with objectness".
        with_obj = num_attrs - 5
        without_obj = num_attrs - 4
        n_labels = len(self.labels)
        return with_obj > 0 and (with_obj == n_labels or without_obj != n_labels)

    def decode(self, output: np.ndarray, meta: PreprocessMeta) -> list[BoundingBoxDetection]:
        tensor = np.asarray(output, dtype=np.float64)
        layout = infer_layout(tensor.shape)
        if layout is None:
            logger.warning("Unrecognized detector output shape %s", tensor.shape)
            return []
        rows = layout.rows(tensor)
        if layout.kind == PrefilteredLayout.kind:
            return self._decode_prefiltered(rows, meta)
        return self._decode_generic(rows, meta)

    def _decode_prefiltered(self, rows: np.ndarray, meta: PreprocessMeta) -> list[BoundingBoxDetection]:
        out: list[BoundingBoxDetection] = []
        skipped_class = 0
        for x1, y1, x2, y2, confidence, raw_class in rows:
            if not confidence >= self.confidence_threshold or not math.isfinite(raw_class):
                continue
            class_id = int(round(raw_class))
            if class_id < 0 or class_id >= len(self.labels):
                skipped_class += 1
                continue
            det = self._make_detection((x1, y1, x2, y2), class_id, confidence, meta)
            if det is not None:
                out.append(det)
        if skipped_class:
            logger.debug("Skipped %d detections with out-of-range class ids", skipped_class)
        return out

    def _decode_generic(self, rows: np.ndarray, meta: PreprocessMeta) -> list[BoundingBoxDetection]:
        num_attrs = rows.shape[1]
        if num_attrs < 5 or rows.shape[0] == 0:
            logger.warning("Detector output has %d attributes per box; nothing to decode", num_attrs)
            return []
        use_obj = self.uses_objectness(num_attrs)
        class_scores = rows[:, 5:] if use_obj else rows[:, 4:]

        best_class = np.argmax(class_scores, axis=1)
        best_score = class_scores[np.arange(rows.shape[0]), best_class]
        best_class = np.where(best_score > 0, best_class, 0)
        best_score = np.maximum(best_score, 0.0)
        objectness = rows[:, 4] if use_obj else 1.0
        confidence = best_score * objectness

        coords = rows[:, :4]
        max_coord = max(0.0, float(np.nanmax(coords))) if coords.size else 0.0

        keep = confidence >= self.confidence_threshold
        if not keep.any():
            return []
        coords = coords[keep]
        confidence = confidence[keep]
        best_class = best_class[keep]

        v0, v1, v2, v3 = coords.T
        corner = (num_attrs == 6) & (v2 > v0) & (v3 > v1)
        boxes = np.stack(
            [
                np.where(corner, v0, v0 - v2 / 2.0),
                np.where(corner, v1, v1 - v3 / 2.0),
                np.where(corner, v2, v0 + v2 / 2.0),
                np.where(corner, v3, v1 + v3 / 2.0),
            ],
            axis=1,
        )
        if max_coord <= NORMALIZED_COORD_LIMIT:
            boxes = boxes * np.array(
                [meta.input_width, meta.input_height, meta.input_width, meta.input_height], dtype=np.float64
            )

        out: list[BoundingBoxDetection] = []
        for index in non_max_suppression(boxes, confidence, self.iou_threshold):
            det = self._make_detection(boxes[index], int(best_class[index]), confidence[index], meta)
            if det is not None:
                out.append(det)
        return out

    def _make_detection(
        self, box: Sequence[float], class_id: int, confidence: float, meta: PreprocessMeta
    ) -> BoundingBoxDetection | None:
        x1, y1 = meta.inverse(float(box[0]), float(box[1]))
        x2, y2 = meta.inverse(float(box[2]), float(box[3]))
        x1 = min(max(x1, 0.0), meta.frame_width)
        x2 = min(max(x2, 0.0), meta.frame_width)
        y1 = min(max(y1, 0.0), meta.frame_height)
        y2 = min(max(y2, 0.0), meta.frame_height)
        width, height = x2 - x1, y2 - y1
        if not (width > 0 and height > 0):
            return None
        return BoundingBoxDetection(
            x=x1,
            y=y1,
            width=width,
            height=height,
            label=self.label_for(class_id),
            class_id=class_id,
            confidence=float(confidence),
        )
