"""
Hand pose via the MediaPipe HandLandmarker (21 points per hand).
"""

from __future__ import annotations

from typing import Any

import mediapipe as mp

from detectors.mediapipe_base import MediaPipeDetector, landmarks_to_pixels
from perception.geometry import normalize_hand
from perception.models import Capability, LandmarkDetection, LandmarkSet, VideoFrame


class HandDetector(MediaPipeDetector):
    capability = Capability.HAND
    display_name = "Hand Pose"
    model_file = "hand_landmarker.task"

    @staticmethod
    def default_settings() -> dict[str, Any]:
        return {
            "num_hands": 2,
            "min_hand_detection_confidence": 0.5,
            "min_hand_presence_confidence": 0.5,
            "min_tracking_confidence": 0.5,
        }

    def _create_task(self, base_options: mp.tasks.BaseOptions) -> Any:
        s = self.settings
        options = mp.tasks.vision.HandLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.VIDEO,
            num_hands=int(s["num_hands"]),
            min_hand_detection_confidence=float(s["min_hand_detection_confidence"]),
            min_hand_presence_confidence=float(s["min_hand_presence_confidence"]),
            min_tracking_confidence=float(s["min_tracking_confidence"]),
        )
        return mp.tasks.vision.HandLandmarker.create_from_options(options)

    def decode(self, raw: Any, frame: VideoFrame) -> list[LandmarkDetection]:
        out: list[LandmarkDetection] = []
        handedness = getattr(raw, "handedness", None) or []
        for i, hand in enumerate(getattr(raw, "hand_landmarks", None) or []):
            label, score = "", 1.0
            if i < len(handedness) and handedness[i]:
                label = handedness[i][0].category_name or ""
                score = float(handedness[i][0].score)
            # The landmarker reports no per-point confidence for hands.
            landmarks = LandmarkSet(
                points=landmarks_to_pixels(hand, frame.width, frame.height),
                score=score,
                label=label,
            )
            out.append(LandmarkDetection(landmarks=landmarks, features=normalize_hand(landmarks)))
        return out
