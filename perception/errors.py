"""
Error types raised by the perception pipeline.
"""

from __future__ import annotations

from typing import Any


class PerceptionError(Exception):
    """Base error. ``capability`` is set when the failure is scoped to one detector."""

    code = "perception_error"

    def __init__(
        self,
        message: str,
        capability: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.capability = capability
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "capability": self.capability,
            "details": self.details,
        }


class CaptureError(PerceptionError):
    """Camera or video file could not be opened or read. Not retried."""

    code = "capture_error"


class ModelLoadError(PerceptionError):
    code = "model_load_error"


class InferenceError(PerceptionError):
    code = "inference_error"


class DecodeError(PerceptionError):
    """Raw model output could not be turned into results for this frame."""

    code = "decode_error"


class ConfigError(PerceptionError):
    code = "config_error"
