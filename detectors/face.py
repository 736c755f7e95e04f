"""
Face mesh via the MediaPipe FaceLandmarker.
"""

from __future__ import annotations

from typing import Any

import mediapipe as mp

from detectors.mediapipe_base import MediaPipeDetector, landmarks_to_pixels
from perception.geometry import Scheme, normalize
from perception.models import Capability, LandmarkDetection, LandmarkSet, VideoFrame


class FaceDetector(MediaPipeDetector):
    capability = Capability.FACE
    display_name = "Face Mesh"
    model_file = "face_landmarker.task"

    @staticmethod
    def default_settings() -> dict[str, Any]:
        return {
            "num_faces": 1,
            "min_face_detection_confidence": 0.5,
            "min_face_presence_confidence": 0.5,
            "min_tracking_confidence": 0.5,
            # face, face_distance, face_pose or face_hybrid
            "feature_scheme": Scheme.FACE.value,
        }

    def __init__(self, variant: str | None = None, settings: dict[str, Any] | None = None) -> None:
        super().__init__(variant, settings)
        self.scheme = Scheme(self.settings["feature_scheme"])
        if not self.scheme.value.startswith("face"):
            raise ValueError(f"{self.scheme.value!r} is not a face feature scheme")

    def _create_task(self, base_options: mp.tasks.BaseOptions) -> Any:
        s = self.settings
        options = mp.tasks.vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.VIDEO,
            num_faces=int(s["num_faces"]),
            min_face_detection_confidence=float(s["min_face_detection_confidence"]),
            min_face_presence_confidence=float(s["min_face_presence_confidence"]),
            min_tracking_confidence=float(s["min_tracking_confidence"]),
        )
        return mp.tasks.vision.FaceLandmarker.create_from_options(options)

    def decode(self, raw: Any, frame: VideoFrame) -> list[LandmarkDetection]:
        out: list[LandmarkDetection] = []
        for face in getattr(raw, "face_landmarks", None) or []:
            landmarks = LandmarkSet(points=landmarks_to_pixels(face, frame.width, frame.height))
            out.append(LandmarkDetection(landmarks=landmarks, features=normalize(self.scheme, landmarks)))
        return out
