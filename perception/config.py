"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from perception.decoding import DEFAULT_LABELS, load_labels
from perception.errors import ConfigError


@dataclass
class CameraConfig:
    """Camera index or video file path."""
    device_id: int | str = 0
    resolution: list[int] | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "CameraConfig":
        return cls(
            device_id=d.get("device_id", 0),
            resolution=d.get("resolution"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"device_id": self.device_id, "resolution": self.resolution}


@dataclass
class SchedulerConfig:
    """Inference scheduling intervals, in seconds."""
    debounce_s: float = 0.3
    poll_interval_s: float = 0.2
    frame_interval_s: float = 0.0
    object_frame_interval_s: float = 0.15

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SchedulerConfig":
        return cls(
            debounce_s=float(d.get("debounce_s", 0.3)),
            poll_interval_s=float(d.get("poll_interval_s", 0.2)),
            frame_interval_s=float(d.get("frame_interval_s", 0.0)),
            object_frame_interval_s=float(d.get("object_frame_interval_s", 0.15)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "debounce_s": self.debounce_s,
            "poll_interval_s": self.poll_interval_s,
            "frame_interval_s": self.frame_interval_s,
            "object_frame_interval_s": self.object_frame_interval_s,
        }


@dataclass
class SinkConfig:
    """Render loop rate and overlay staleness."""
    fps: float = 30.0
    stale_after_ms: float = 500.0
    fade_after_ms: float = 200.0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SinkConfig":
        return cls(
            fps=float(d.get("fps", 30.0)),
            stale_after_ms=float(d.get("stale_after_ms", 500.0)),
            fade_after_ms=float(d.get("fade_after_ms", 200.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "fps": self.fps,
            "stale_after_ms": self.stale_after_ms,
            "fade_after_ms": self.fade_after_ms,
        }


@dataclass
class ObjectDetectorConfig:
    """Generic ONNX object detector configuration. Input size/layout auto-detected when None."""
    model_path: str = ""
    confidence_threshold: float = 0.25
    iou_threshold: float = 0.45
    input_width: int | None = None
    input_height: int | None = None
    input_layout: str | None = None
    letterbox: bool = True
    labels: list[str] = field(default_factory=lambda: list(DEFAULT_LABELS))

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ObjectDetectorConfig":
        labels = d.get("labels")
        if labels is None and d.get("labels_file"):
            labels = load_labels(d["labels_file"])
        return cls(
            model_path=d.get("model_path", ""),
            confidence_threshold=float(d.get("confidence_threshold", 0.25)),
            iou_threshold=float(d.get("iou_threshold", 0.45)),
            input_width=d.get("input_width"),
            input_height=d.get("input_height"),
            input_layout=d.get("input_layout"),
            letterbox=bool(d.get("letterbox", True)),
            labels=list(labels) if labels else list(DEFAULT_LABELS),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_path": self.model_path,
            "confidence_threshold": self.confidence_threshold,
            "iou_threshold": self.iou_threshold,
            "input_width": self.input_width,
            "input_height": self.input_height,
            "input_layout": self.input_layout,
            "letterbox": self.letterbox,
            "labels": list(self.labels),
        }

    def validate(self) -> None:
        for name in ("confidence_threshold", "iou_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"object_detector.{name} must be in [0, 1], got {value}")
        if self.input_layout is not None and str(self.input_layout).upper() not in ("NCHW", "NHWC"):
            raise ConfigError(f"object_detector.input_layout must be NCHW or NHWC, got {self.input_layout!r}")
        for name in ("input_width", "input_height"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"object_detector.{name} must be an integer, got {value!r}")
            if value <= 0:
                raise ConfigError(f"object_detector.{name} must be positive, got {value}")


@dataclass
class PipelineConfig:
    """Top-level configuration."""
    camera: CameraConfig = field(default_factory=CameraConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)
    object_detector: ObjectDetectorConfig = field(default_factory=ObjectDetectorConfig)
    # Per-capability detector settings, e.g. {"body": {"variant": "full", "num_poses": 2}}
    detectors: dict[str, dict[str, Any]] = field(default_factory=dict)
    log_level: str = "INFO"
    log_path: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PipelineConfig":
        return cls(
            camera=CameraConfig.from_dict(d.get("camera") or {}),
            scheduler=SchedulerConfig.from_dict(d.get("scheduler") or {}),
            sink=SinkConfig.from_dict(d.get("sink") or {}),
            object_detector=ObjectDetectorConfig.from_dict(d.get("object_detector") or {}),
            detectors=dict(d.get("detectors") or {}),
            log_level=str(d.get("log_level", "INFO")).upper(),
            log_path=d.get("log_path"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "camera": self.camera.to_dict(),
            "scheduler": self.scheduler.to_dict(),
            "sink": self.sink.to_dict(),
            "object_detector": self.object_detector.to_dict(),
            "detectors": self.detectors,
            "log_level": self.log_level,
            "log_path": self.log_path,
        }

    def validate(self) -> None:
        if self.sink.fps <= 0:
            raise ConfigError(f"sink.fps must be positive, got {self.sink.fps}")
        if not 0 <= self.sink.fade_after_ms < self.sink.stale_after_ms:
            raise ConfigError("sink.fade_after_ms must be >= 0 and below sink.stale_after_ms")
        for name, value in self.scheduler.to_dict().items():
            if value < 0:
                raise ConfigError(f"scheduler.{name} must not be negative, got {value}")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Unknown log_level {self.log_level!r}")
        self.object_detector.validate()

    def detector_settings(self, capability: str) -> dict[str, Any]:
        """Settings dict handed to a capability's detector."""
        if capability == "object":
            return self.object_detector.to_dict()
        return dict(self.detectors.get(capability, {}))


def load_config(path: str | Path | None = None) -> PipelineConfig:
    """Read a YAML config file; no path means defaults."""
    if path is None:
        config = PipelineConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must contain a mapping at the top level")
        try:
            config = PipelineConfig.from_dict(data)
        except (TypeError, ValueError, OSError) as e:
            raise ConfigError(f"Invalid config {path}: {e}") from e
    config.validate()
    return config
