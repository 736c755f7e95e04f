"""
Landmark geometry normalization.

Turns a raw landmark set into a fixed-length feature vector that does not
change when the subject moves across the frame, moves closer to the camera, or
tilts its head/hand/shoulders in the image plane:

1. translate so a reference origin (wrist, hip midpoint, eye midpoint) is (0, 0)
2. divide by a reference distance
3. rotate so a reference axis is horizontal
4. flatten to ``[x0, y0, x1, y1, ...]``

Every failure (missing reference points, degenerate scale, an all-zero result)
returns ``None``. A returned array always has ``FEATURE_LENGTHS[scheme]`` values.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Callable

import numpy as np

from perception.models import LandmarkSet


class Scheme(str, Enum):
    HAND = "hand"
    BODY = "body"
    FACE = "face"
    FACE_DISTANCE = "face_distance"
    FACE_POSE = "face_pose"
    FACE_HYBRID = "face_hybrid"


HAND_POINTS = 21
BODY_POINTS = 17
FACE_POINTS = 468

FEATURE_LENGTHS: dict[Scheme, int] = {
    Scheme.HAND: (HAND_POINTS - 1) * 2,
    Scheme.BODY: BODY_POINTS * 2,
    Scheme.FACE: FACE_POINTS * 2,
    Scheme.FACE_DISTANCE: 25,
    Scheme.FACE_POSE: 3,
    Scheme.FACE_HYBRID: 28,
}

# Hand (21 points)
WRIST = 0
MIDDLE_FINGER_MCP = 9

# Body, COCO order
LEFT_SHOULDER = 5
RIGHT_SHOULDER = 6
LEFT_HIP = 11
RIGHT_HIP = 12

# Face mesh
LEFT_EYE = 33
RIGHT_EYE = 263
NOSE_TIP = 1
CHIN = 152

BODY_SCALE_EPSILON = 1e-3
SCALE_EPSILON = 1e-6
ENERGY_EPSILON = 1e-4
ROLL_RANGE_RAD = math.radians(45.0)


def _points(landmarks: LandmarkSet, count: int) -> np.ndarray | None:
    """First ``count`` points as a float (count, 2) copy, or None if there are fewer."""
    pts = np.asarray(landmarks.points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[0] < count or pts.shape[1] < 2:
        return None
    return pts[:count, :2].copy()


def _confident(landmarks: LandmarkSet, count: int, min_confidence: float) -> np.ndarray:
    if landmarks.confidence is None:
        return np.ones(count, dtype=bool)
    conf = np.asarray(landmarks.confidence, dtype=np.float64)[:count]
    if conf.shape[0] < count:
        conf = np.concatenate([conf, np.zeros(count - conf.shape[0])])
    return np.nan_to_num(conf, nan=0.0) > min_confidence


def _rotate(points: np.ndarray, angle: float) -> np.ndarray:
    """Rotate every point by ``-angle`` around the origin."""
    cos_a = math.cos(-angle)
    sin_a = math.sin(-angle)
    rotation = np.array([[cos_a, -sin_a], [sin_a, cos_a]])
    return points @ rotation.T


def _finalize(vector: np.ndarray, scheme: Scheme) -> np.ndarray | None:
    if vector.shape != (FEATURE_LENGTHS[scheme],):
        return None
    if not np.isfinite(vector).all():
        return None
    if float(np.abs(vector).sum()) < ENERGY_EPSILON:
        return None
    return vector


def normalize_hand(landmarks: LandmarkSet, min_confidence: float = 0.0) -> np.ndarray | None:
    """40 values: points 1..20 relative to the wrist, scaled by the farthest point,
    rotated so wrist -> middle-finger base is horizontal."""
    pts = _points(landmarks, HAND_POINTS)
    if pts is None:
        return None
    ok = _confident(landmarks, HAND_POINTS, min_confidence) & np.isfinite(pts).all(axis=1)
    if not (ok[WRIST] and ok[MIDDLE_FINGER_MCP]):
        return None
    pts[~ok] = pts[WRIST]
    pts -= pts[WRIST]
    scale = float(np.max(np.hypot(pts[:, 0], pts[:, 1])))
    if not math.isfinite(scale) or scale < SCALE_EPSILON:
        return None
    pts /= scale
    axis = pts[MIDDLE_FINGER_MCP]
    pts = _rotate(pts, math.atan2(axis[1], axis[0]))
    pts[~ok] = 0.0
    # The wrist is (0, 0) by construction, so it is left out.
    return _finalize(pts[1:].ravel(), Scheme.HAND)


def normalize_body(landmarks: LandmarkSet, min_confidence: float = 0.0) -> np.ndarray | None:
    """34 values: COCO-17 keypoints centred on the hips, scaled by shoulder width
    (or vertical extent when the shoulders are unusable), shoulder line horizontal."""
    pts = _points(landmarks, BODY_POINTS)
    if pts is None:
        return None
    ok = _confident(landmarks, BODY_POINTS, min_confidence) & np.isfinite(pts).all(axis=1)
    pts[~ok] = 0.0

    hips = [i for i in (LEFT_HIP, RIGHT_HIP) if ok[i]]
    if not hips:
        return None
    pts -= pts[hips].mean(axis=0)

    shoulders_ok = bool(ok[LEFT_SHOULDER] and ok[RIGHT_SHOULDER])
    scale = 0.0
    if shoulders_ok:
        dx, dy = pts[RIGHT_SHOULDER] - pts[LEFT_SHOULDER]
        scale = math.hypot(dx, dy)
    if not math.isfinite(scale) or scale < BODY_SCALE_EPSILON:
        scale = float(np.max(np.abs(pts[ok, 1])))
    if not math.isfinite(scale) or scale < BODY_SCALE_EPSILON:
        return None
    pts /= scale

    angle = 0.0
    if shoulders_ok:
        dx, dy = pts[RIGHT_SHOULDER] - pts[LEFT_SHOULDER]
        angle = math.atan2(dy, dx)
    pts = _rotate(pts, angle)
    pts[~ok] = 0.0
    return _finalize(pts.ravel(), Scheme.BODY)


def _face_frame(landmarks: LandmarkSet) -> tuple[np.ndarray, float] | None:
    """Face points centred on the eye midpoint and rolled level, plus the eye distance."""
    pts = _points(landmarks, FACE_POINTS)
    if pts is None:
        return None
    left, right = pts[LEFT_EYE], pts[RIGHT_EYE]
    if not (np.isfinite(left).all() and np.isfinite(right).all()):
        return None
    dx, dy = right - left
    eye_dist = math.hypot(dx, dy)
    if not math.isfinite(eye_dist) or eye_dist < SCALE_EPSILON:
        return None
    pts -= (left + right) / 2.0
    return _rotate(pts, math.atan2(dy, dx)), eye_dist


def normalize_face(landmarks: LandmarkSet) -> np.ndarray | None:
    """936 values: all 468 mesh points in eye-distance units, eye line horizontal."""
    framed = _face_frame(landmarks)
    if framed is None:
        return None
    aligned, eye_dist = framed
    if not np.isfinite(aligned).all():
        return None
    return _finalize((aligned / eye_dist).ravel(), Scheme.FACE)


# (kind, a, b): "dist" = distance a-b, "dy" = |y(a) - y(b)|, "x"/"y" = coordinate of a
_FACE_DISTANCE_FEATURES: tuple[tuple[str, int, int], ...] = (
    ("dist", 159, 145),  # left eye opening
    ("dist", 386, 374),  # right eye opening
    ("dist", 33, 133),  # left eye width
    ("dist", 362, 263),  # right eye width
    ("dy", 70, 159),  # left brow above eye
    ("dy", 300, 386),  # right brow above eye
    ("dist", 70, 46),  # left brow width
    ("dist", 300, 276),  # right brow width
    ("dist", 61, 291),  # mouth width
    ("dist", 0, 17),  # outer lip height
    ("dist", 13, 14),  # inner lip height
    ("y", 61, 0),  # left mouth corner
    ("y", 291, 0),  # right mouth corner
    ("y", 0, 0),  # upper lip
    ("y", 17, 0),  # lower lip
    ("dist", 1, 13),  # nose tip to upper lip
    ("dist", 168, 6),  # nose bridge
    ("dist", 94, 326),  # nostril width
    ("x", 1, 0),  # nose tip x
    ("y", 1, 0),  # nose tip y
    ("dist", 10, 152),  # face height
    ("dist", 234, 454),  # face width
    ("dist", 234, 33),  # left cheek to eye
    ("dist", 454, 263),  # right cheek to eye
    ("dist", 152, 17),  # chin to lower lip
)


def face_distance_features(landmarks: LandmarkSet) -> np.ndarray | None:
    """25 roll-corrected distances and positions, in eye-distance units."""
    framed = _face_frame(landmarks)
    if framed is None:
        return None
    aligned, eye_dist = framed
    scaled = aligned / eye_dist
    values = []
    for kind, a, b in _FACE_DISTANCE_FEATURES:
        if kind == "dist":
            values.append(math.hypot(*(scaled[b] - scaled[a])))
        elif kind == "dy":
            values.append(abs(scaled[a, 1] - scaled[b, 1]))
        elif kind == "x":
            values.append(scaled[a, 0])
        else:
            values.append(scaled[a, 1])
    vector = np.nan_to_num(np.asarray(values, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    return _finalize(vector, Scheme.FACE_DISTANCE)


def face_pose_vector(landmarks: LandmarkSet) -> np.ndarray | None:
    """[yaw, pitch, roll], each clamped to [-1, 1]."""
    pts = _points(landmarks, FACE_POINTS)
    if pts is None:
        return None
    left, right, nose, chin = pts[LEFT_EYE], pts[RIGHT_EYE], pts[NOSE_TIP], pts[CHIN]
    if not np.isfinite(np.stack([left, right, nose, chin])).all():
        return None
    dx, dy = right - left
    eye_dist = math.hypot(dx, dy)
    if eye_dist < SCALE_EPSILON:
        return None
    eye_center_y = (left[1] + right[1]) / 2.0
    face_height = chin[1] - eye_center_y
    if abs(face_height) < SCALE_EPSILON:
        return None

    yaw = (abs(nose[0] - left[0]) - abs(right[0] - nose[0])) / eye_dist
    pitch = ((nose[1] - eye_center_y) / face_height - 0.5) * 2.0
    roll = math.atan2(dy, dx) / ROLL_RANGE_RAD
    vector = np.clip(np.array([yaw, pitch, roll], dtype=np.float64), -1.0, 1.0)
    return _finalize(vector, Scheme.FACE_POSE)


def face_hybrid_vector(landmarks: LandmarkSet) -> np.ndarray | None:
    distances = face_distance_features(landmarks)
    pose = face_pose_vector(landmarks)
    if distances is None or pose is None:
        return None
    return _finalize(np.concatenate([distances, pose]), Scheme.FACE_HYBRID)


_NORMALIZERS: dict[Scheme, Callable[[LandmarkSet], np.ndarray | None]] = {
    Scheme.HAND: normalize_hand,
    Scheme.BODY: normalize_body,
    Scheme.FACE: normalize_face,
    Scheme.FACE_DISTANCE: face_distance_features,
    Scheme.FACE_POSE: face_pose_vector,
    Scheme.FACE_HYBRID: face_hybrid_vector,
}


def normalize(scheme: Scheme | str, landmarks: LandmarkSet) -> np.ndarray | None:
    """Feature vector for ``landmarks`` under ``scheme``; None when invalid."""
    return _NORMALIZERS[Scheme(scheme)](landmarks)
