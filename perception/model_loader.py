"""
Ensures MediaPipe Tasks .task model files exist; downloads from Google storage if missing.
"""

from __future__ import annotations

import logging
import os
import urllib.request
from pathlib import Path

logger = logging.getLogger(__name__)

_BASE_URL = "https://storage.googleapis.com/mediapipe-models"

# Official MediaPipe model URLs (Google storage)
_MODEL_URLS = {
    "hand_landmarker.task": f"{_BASE_URL}/hand_landmarker/hand_landmarker/float16/latest/hand_landmarker.task",
    "face_landmarker.task": f"{_BASE_URL}/face_landmarker/face_landmarker/float16/latest/face_landmarker.task",
}
for _v in ("lite", "full", "heavy"):
    _MODEL_URLS[f"pose_landmarker_{_v}.task"] = (
        f"{_BASE_URL}/pose_landmarker/pose_landmarker_{_v}/float16/latest/pose_landmarker_{_v}.task"
    )


def models_dir() -> Path:
    """Cache directory for downloaded models; VISION_LAB_MODELS_DIR overrides the default."""
    override = os.environ.get("VISION_LAB_MODELS_DIR")
    path = Path(override) if override else Path(__file__).resolve().parent.parent / "models"
    path.mkdir(parents=True, exist_ok=True)
    return path


def known_models() -> list[str]:
    return sorted(_MODEL_URLS)


def get_model_path(filename: str) -> Path:
    """Return path to the model file; download if not present."""
    url = _MODEL_URLS.get(filename)
    if not url:
        raise FileNotFoundError(f"Unknown model: {filename}. Known: {known_models()}")
    path = models_dir() / filename
    if path.is_file():
        return path
    logger.info("Downloading %s", url)
    partial = path.with_suffix(path.suffix + ".part")
    urllib.request.urlretrieve(url, partial)
    partial.replace(path)
    return path
