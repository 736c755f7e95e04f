"""
Tests for YAML configuration loading and validation.
"""

import pytest

from perception.config import ObjectDetectorConfig, PipelineConfig, load_config
from perception.errors import ConfigError


@pytest.fixture
def config_file(tmp_path):
    labels = tmp_path / "labels.txt"
    labels.write_text("cat\ndog\n")
    path = tmp_path / "vision.yaml"
    path.write_text(
        f"""
camera:
  device_id: 1
  resolution: [1280, 720]

scheduler:
  debounce_s: 0.5
  object_frame_interval_s: 0.2

sink:
  fps: 24

object_detector:
  model_path: "models/yolov8n.onnx"
  confidence_threshold: 0.4
  labels_file: "{labels.as_posix()}"

detectors:
  body:
    variant: full
    num_poses: 2

log_level: debug
"""
    )
    return path


class TestLoadConfig:
    def test_defaults_without_path(self):
        config = load_config()
        assert config.scheduler.debounce_s == 0.3
        assert config.scheduler.poll_interval_s == 0.2
        assert config.scheduler.object_frame_interval_s == 0.15
        assert config.sink.stale_after_ms == 500.0
        assert config.object_detector.confidence_threshold == 0.25
        assert config.object_detector.iou_threshold == 0.45
        assert config.object_detector.letterbox is True
        assert len(config.object_detector.labels) == 80

    def test_yaml_values(self, config_file):
        config = load_config(config_file)
        assert config.camera.device_id == 1
        assert config.camera.resolution == [1280, 720]
        assert config.scheduler.debounce_s == 0.5
        assert config.scheduler.poll_interval_s == 0.2
        assert config.sink.fps == 24
        assert config.object_detector.labels == ["cat", "dog"]
        assert config.log_level == "DEBUG"

    def test_detector_settings(self, config_file):
        config = load_config(config_file)
        assert config.detector_settings("body") == {"variant": "full", "num_poses": 2}
        assert config.detector_settings("hand") == {}
        obj = config.detector_settings("object")
        assert obj["model_path"] == "models/yolov8n.onnx"
        assert obj["confidence_threshold"] == 0.4

    def test_round_trip_through_dict(self, config_file):
        config = load_config(config_file)
        again = PipelineConfig.from_dict(config.to_dict())
        assert again == config

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.yaml")

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("camera: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path)


class TestValidation:
    @pytest.mark.parametrize(
        "data,field",
        [
            ({"object_detector": {"confidence_threshold": 1.5}}, "confidence_threshold"),
            ({"object_detector": {"iou_threshold": -0.1}}, "iou_threshold"),
            ({"object_detector": {"input_layout": "CHW"}}, "input_layout"),
            ({"object_detector": {"input_width": 0}}, "input_width"),
            ({"sink": {"fps": 0}}, "fps"),
            ({"sink": {"fade_after_ms": 600}}, "fade_after_ms"),
            ({"scheduler": {"debounce_s": -1}}, "debounce_s"),
            ({"log_level": "chatty"}, "log_level"),
        ],
    )
    def test_bad_values_rejected(self, data, field):
        with pytest.raises(ConfigError) as exc:
            PipelineConfig.from_dict(data).validate()
        assert field in exc.value.message
        assert exc.value.to_dict()["code"] == "config_error"

    def test_empty_label_list_uses_default(self):
        assert len(ObjectDetectorConfig.from_dict({"labels": []}).labels) == 80


class TestLoadConfigErrors:
    @pytest.mark.parametrize(
        "body",
        [
            "scheduler:\n  debounce_s: soon\n",
            "object_detector:\n  labels_file: /nonexistent/labels.txt\n",
            "object_detector:\n  input_width: wide\n",
            "sink:\n  fps: [30]\n",
        ],
    )
    def test_bad_values_become_config_errors(self, tmp_path, body):
        path = tmp_path / "bad_values.yaml"
        path.write_text(body)
        with pytest.raises(ConfigError) as exc:
            load_config(path)
        assert exc.value.to_dict()["code"] == "config_error"

    def test_non_integer_input_size_rejected(self):
        with pytest.raises(ConfigError) as exc:
            ObjectDetectorConfig(input_height="tall").validate()
        assert "input_height" in exc.value.message
