"""
Body pose via the MediaPipe PoseLandmarker, reported as COCO-17 keypoints.
"""

from __future__ import annotations

from typing import Any

import mediapipe as mp
import numpy as np

from detectors.mediapipe_base import MediaPipeDetector, landmarks_to_pixels
from perception.geometry import normalize_body
from perception.models import Capability, LandmarkDetection, LandmarkSet, VideoFrame

# BlazePose index for each COCO keypoint, in COCO order:
# nose, eyes, ears, shoulders, elbows, wrists, hips, knees, ankles
BLAZEPOSE_TO_COCO = (0, 2, 5, 7, 8, 11, 12, 13, 14, 15, 16, 23, 24, 25, 26, 27, 28)


def to_coco(points: np.ndarray, visibility: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    idx = np.asarray(BLAZEPOSE_TO_COCO)
    return points[idx], visibility[idx]


class BodyDetector(MediaPipeDetector):
    capability = Capability.BODY
    display_name = "Body Pose"
    variants = ("lite", "full", "heavy")

    @staticmethod
    def default_settings() -> dict[str, Any]:
        return {
            "num_poses": 1,
            "min_pose_detection_confidence": 0.5,
            "min_pose_presence_confidence": 0.5,
            "min_tracking_confidence": 0.5,
            # Keypoints at or below this visibility are zeroed in the feature vector
            "min_keypoint_confidence": 0.3,
        }

    @property
    def model_file(self) -> str:  # type: ignore[override]
        return f"pose_landmarker_{self.variant}.task"

    def _create_task(self, base_options: mp.tasks.BaseOptions) -> Any:
        s = self.settings
        options = mp.tasks.vision.PoseLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.VIDEO,
            num_poses=int(s["num_poses"]),
            min_pose_detection_confidence=float(s["min_pose_detection_confidence"]),
            min_pose_presence_confidence=float(s["min_pose_presence_confidence"]),
            min_tracking_confidence=float(s["min_tracking_confidence"]),
        )
        return mp.tasks.vision.PoseLandmarker.create_from_options(options)

    def decode(self, raw: Any, frame: VideoFrame) -> list[LandmarkDetection]:
        min_conf = float(self.settings["min_keypoint_confidence"])
        out: list[LandmarkDetection] = []
        for pose in getattr(raw, "pose_landmarks", None) or []:
            if len(pose) < 33:
                continue
            pts = landmarks_to_pixels(pose, frame.width, frame.height)
            vis = np.array(
                [lm.visibility if lm.visibility is not None else 0.0 for lm in pose], dtype=np.float64
            )
            coco_pts, coco_vis = to_coco(pts, vis)
            landmarks = LandmarkSet(points=coco_pts, confidence=coco_vis, score=float(coco_vis.mean()))
            out.append(
                LandmarkDetection(landmarks=landmarks, features=normalize_body(landmarks, min_conf))
            )
        return out
