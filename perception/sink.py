"""
Frame sink: paints the latest results over the live frame at display rate.

The sink only reads the store. It never waits for inference, so a stalled
detector cannot stall the display; stale results fade out and disappear.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import cv2
import numpy as np

from perception.models import (
    BoundingBoxDetection,
    Capability,
    FrameResults,
    LandmarkDetection,
    VideoFrame,
    results_to_schema,
)
from perception.scheduler import FrameSourceLike
from perception.store import STALE_AFTER_MS, DetectionSnapshot, DetectionStore
from perception.utils import FPSCounter, now_ms

logger = logging.getLogger(__name__)

FADE_AFTER_MS = 200.0

HAND_CHAINS = (
    (0, 1, 2, 3, 4),
    (0, 5, 6, 7, 8),
    (0, 9, 10, 11, 12),
    (0, 13, 14, 15, 16),
    (0, 17, 18, 19, 20),
)
# Thumb .. pinky, BGR
HAND_COLORS = ((0, 120, 255), (0, 200, 255), (60, 240, 180), (240, 200, 60), (240, 90, 200))

COCO_EDGES = (
    (5, 6), (5, 7), (7, 9), (6, 8), (8, 10),
    (5, 11), (6, 12), (11, 12),
    (11, 13), (13, 15), (12, 14), (14, 16),
    (0, 1), (0, 2), (1, 3), (2, 4),
)

FACE_COLOR = (200, 255, 0)
BODY_COLOR = (255, 180, 80)
BOX_COLOR = (80, 220, 80)


def overlay_opacity(
    age_ms: float, fade_after_ms: float = FADE_AFTER_MS, stale_after_ms: float = STALE_AFTER_MS
) -> float:
    """1.0 while fresh, linear fade between the two limits, 0.0 (not drawn) once stale."""
    if age_ms > stale_after_ms:
        return 0.0
    if age_ms > fade_after_ms:
        return max(0.0, 1.0 - (age_ms - fade_after_ms) / (stale_after_ms - fade_after_ms))
    return 1.0


def _pt(p: np.ndarray) -> tuple[int, int]:
    return int(round(float(p[0]))), int(round(float(p[1])))


def _finite(p: np.ndarray) -> bool:
    return bool(np.isfinite(p[:2]).all())


def draw_landmarks(canvas: np.ndarray, capability: Capability, det: LandmarkDetection) -> None:
    pts = det.landmarks.points
    if capability is Capability.HAND:
        for chain, color in zip(HAND_CHAINS, HAND_COLORS):
            for a, b in zip(chain, chain[1:]):
                if b < len(pts) and _finite(pts[a]) and _finite(pts[b]):
                    cv2.line(canvas, _pt(pts[a]), _pt(pts[b]), color, 3, cv2.LINE_AA)
        for p in pts:
            if _finite(p):
                cv2.circle(canvas, _pt(p), 3, (255, 255, 255), -1, cv2.LINE_AA)
    elif capability is Capability.BODY:
        conf = det.landmarks.confidence
        visible = np.ones(len(pts), dtype=bool) if conf is None else np.asarray(conf) > 0
        for a, b in COCO_EDGES:
            if b < len(pts) and visible[a] and visible[b] and _finite(pts[a]) and _finite(pts[b]):
                cv2.line(canvas, _pt(pts[a]), _pt(pts[b]), BODY_COLOR, 2, cv2.LINE_AA)
        for p, ok in zip(pts, visible):
            if ok and _finite(p):
                cv2.circle(canvas, _pt(p), 4, (255, 255, 255), -1, cv2.LINE_AA)
    else:
        for p in pts:
            if _finite(p):
                cv2.circle(canvas, _pt(p), 1, FACE_COLOR, -1)


def draw_box(canvas: np.ndarray, det: BoundingBoxDetection) -> None:
    p1 = (int(det.x), int(det.y))
    p2 = (int(det.x2), int(det.y2))
    cv2.rectangle(canvas, p1, p2, BOX_COLOR, 2)
    text = f"{det.label} {det.confidence * 100:.0f}%"
    (tw, th), baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)
    top = max(0, p1[1] - th - baseline - 4)
    cv2.rectangle(canvas, (p1[0], top), (p1[0] + tw + 4, top + th + baseline + 4), BOX_COLOR, -1)
    cv2.putText(canvas, text, (p1[0] + 2, top + th + 2), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 0, 0), 1, cv2.LINE_AA)


def paint_snapshot(image: np.ndarray, snapshot: DetectionSnapshot, opacity: float) -> np.ndarray:
    """Blend ``snapshot``'s results onto ``image`` at ``opacity``; returns the new image."""
    if opacity <= 0.0 or not snapshot.results:
        return image
    layer = image.copy()
    for det in snapshot.results:
        if isinstance(det, BoundingBoxDetection):
            draw_box(layer, det)
        elif isinstance(det, LandmarkDetection):
            draw_landmarks(layer, snapshot.capability, det)
    if opacity >= 1.0:
        return layer
    return cv2.addWeighted(layer, opacity, image, 1.0 - opacity, 0.0)


class FrameSink:
    """Display-rate loop over the latest frame and the store's latest snapshots."""

    def __init__(
        self,
        source: FrameSourceLike,
        store: DetectionStore,
        *,
        fps: float = 30.0,
        fade_after_ms: float = FADE_AFTER_MS,
        stale_after_ms: float = STALE_AFTER_MS,
        on_frame: Callable[[FrameResults], None] | None = None,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self._source = source
        self._store = store
        self._interval_s = 1.0 / fps
        self._fade_after_ms = fade_after_ms
        self._stale_after_ms = stale_after_ms
        self._clock = clock
        self.on_frame = on_frame
        self.last_frame: FrameResults | None = None
        self.rate = FPSCounter()
        self._running = False

    def compose(self, frame: VideoFrame, now: float | None = None) -> FrameResults:
        """Paint every capability whose snapshot is not stale onto a copy of ``frame``."""
        now = self._clock() if now is None else now
        image = frame.image
        results = {}
        for capability, snapshot in self._store.snapshots().items():
            opacity = overlay_opacity(snapshot.age_ms(now), self._fade_after_ms, self._stale_after_ms)
            if opacity <= 0.0:
                continue
            image = paint_snapshot(image, snapshot, opacity)
            results[capability.value] = results_to_schema(
                capability, snapshot.results, snapshot.timestamp_ms, opacity=round(opacity, 3)
            )
        if image is frame.image:
            image = frame.image.copy()
        return FrameResults(frame=frame, image=image, results=results)

    def tick(self, now: float | None = None) -> FrameResults | None:
        """Paint once. Painting errors are logged and the previous composite is reused."""
        frame = self._source.latest() if self._source.is_ready() else None
        if frame is None:
            return self.last_frame
        try:
            composed = self.compose(frame, now)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to paint frame %d", frame.index)
            return self.last_frame
        self.last_frame = composed
        return composed

    async def run(self) -> None:
        self._running = True
        self.rate.reset()
        while self._running:
            composed = self.tick()
            if composed is not None and self.on_frame is not None:
                self.rate.tick()
                try:
                    self.on_frame(composed)
                except Exception:  # noqa: BLE001
                    logger.exception("Frame consumer failed")
            await asyncio.sleep(self._interval_s)

    def stop(self) -> None:
        self._running = False
