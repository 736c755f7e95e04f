"""
Shared plumbing for the MediaPipe Tasks landmarkers (VIDEO running mode).
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Sequence

import cv2
import mediapipe as mp
import numpy as np

from detectors.base import DetectorBase
from perception.models import VideoFrame


def landmarks_to_pixels(landmarks: Sequence[Any], width: int, height: int) -> np.ndarray:
    """Normalized MediaPipe landmarks -> (N, 3) pixel coordinates (z in x-pixel units)."""
    return np.array(
        [[lm.x * width, lm.y * height, (lm.z or 0.0) * width] for lm in landmarks],
        dtype=np.float64,
    ).reshape(-1, 3)


class MediaPipeDetector(DetectorBase):
    """Owns one MediaPipe task instance and feeds it strictly increasing timestamps."""

    model_file: str = ""

    def __init__(self, variant: str | None = None, settings: dict[str, Any] | None = None) -> None:
        super().__init__(variant, settings)
        self._task: Any = None
        self._last_timestamp_ms = -1

    @abstractmethod
    def _create_task(self, base_options: mp.tasks.BaseOptions) -> Any:
        """Build the landmarker from options."""
        ...

    def _model_path(self) -> str:
        from perception.model_loader import get_model_path

        if self.settings.get("model_path"):
            return str(self.settings["model_path"])
        return str(get_model_path(self.model_file))

    def load(self) -> None:
        self.close()
        base_options = mp.tasks.BaseOptions(model_asset_path=self._model_path())
        self._task = self._create_task(base_options)
        self._last_timestamp_ms = -1

    @property
    def loaded(self) -> bool:
        return self._task is not None

    def run(self, frame: VideoFrame) -> Any:
        task = self._task
        if task is None:
            raise RuntimeError(f"{self.capability.value} model is not loaded")
        rgb = cv2.cvtColor(frame.image, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        # VIDEO mode rejects repeated or decreasing timestamps.
        timestamp_ms = max(int(frame.timestamp_ms), self._last_timestamp_ms + 1)
        self._last_timestamp_ms = timestamp_ms
        return task.detect_for_video(mp_image, timestamp_ms)

    def close(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.close()
