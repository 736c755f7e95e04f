"""
Tests for the MediaPipe model cache.
"""

import pytest

from perception.model_loader import get_model_path, known_models


class TestModelLoader:
    def test_known_models_cover_all_body_variants(self):
        names = known_models()
        assert "hand_landmarker.task" in names
        assert "face_landmarker.task" in names
        for variant in ("lite", "full", "heavy"):
            assert f"pose_landmarker_{variant}.task" in names

    def test_unknown_model(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VISION_LAB_MODELS_DIR", str(tmp_path))
        with pytest.raises(FileNotFoundError):
            get_model_path("efficientdet_lite9.tflite")

    def test_cached_file_is_reused(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VISION_LAB_MODELS_DIR", str(tmp_path / "cache"))
        cached = tmp_path / "cache" / "hand_landmarker.task"
        cached.parent.mkdir()
        cached.write_bytes(b"model")
        assert get_model_path("hand_landmarker.task") == cached
