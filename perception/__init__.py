from perception.config import PipelineConfig, load_config
from perception.errors import (
    CaptureError,
    ConfigError,
    DecodeError,
    InferenceError,
    ModelLoadError,
    PerceptionError,
)
from perception.models import (
    BoundingBoxDetection,
    Capability,
    LandmarkDetection,
    LandmarkSet,
    VideoFrame,
)
from perception.pipeline import PerceptionPipeline

__all__ = [
    "BoundingBoxDetection",
    "Capability",
    "CaptureError",
    "ConfigError",
    "DecodeError",
    "InferenceError",
    "LandmarkDetection",
    "LandmarkSet",
    "ModelLoadError",
    "PerceptionError",
    "PipelineConfig",
    "PerceptionPipeline",
    "VideoFrame",
    "load_config",
]
