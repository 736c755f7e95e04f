"""
Generic ONNX object detector (YOLO-style exports) on onnxruntime.

The variant is the path of the .onnx file, so swapping models is a variant
swap. Input size and layout come from the model's declared input shape unless
overridden in the settings.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import onnxruntime as ort

from detectors.base import DetectorBase
from perception.decoding import (
    DEFAULT_LABELS,
    InputSpec,
    ObjectDecoder,
    PreprocessMeta,
    letterbox,
    resolve_input_spec,
    to_input_tensor,
)
from perception.models import BoundingBoxDetection, Capability, VideoFrame

logger = logging.getLogger(__name__)


class ObjectDetector(DetectorBase):
    capability = Capability.OBJECT
    display_name = "Object Detector"
    variants = ()  # any model path

    @staticmethod
    def default_settings() -> dict[str, Any]:
        return {
            "model_path": "",
            "confidence_threshold": 0.25,
            "iou_threshold": 0.45,
            "input_width": None,
            "input_height": None,
            "input_layout": None,
            "letterbox": True,
            "labels": list(DEFAULT_LABELS),
            "providers": None,
        }

    def __init__(self, variant: str | None = None, settings: dict[str, Any] | None = None) -> None:
        super().__init__(variant or (settings or {}).get("model_path"), settings)
        s = self.settings
        self.decoder = ObjectDecoder(
            labels=list(s["labels"] or DEFAULT_LABELS),
            confidence_threshold=float(s["confidence_threshold"]),
            iou_threshold=float(s["iou_threshold"]),
        )
        self._session: ort.InferenceSession | None = None
        self._input_name = ""
        self._output_name = ""
        self.input_spec = InputSpec()

    def load(self) -> None:
        if not self.variant:
            raise FileNotFoundError("No object detector model selected")
        path = Path(self.variant)
        if not path.is_file():
            raise FileNotFoundError(f"Object detector model not found: {path}")
        providers = self.settings.get("providers") or ["CPUExecutionProvider"]
        session_options = ort.SessionOptions()
        session_options.log_severity_level = 3
        session = ort.InferenceSession(str(path), sess_options=session_options, providers=providers)
        model_input = session.get_inputs()[0]
        s = self.settings
        self.input_spec = resolve_input_spec(
            model_input.shape, s.get("input_width"), s.get("input_height"), s.get("input_layout")
        )
        self._input_name = model_input.name
        self._output_name = session.get_outputs()[0].name
        self._session = session
        logger.info(
            "Loaded %s: input %r %dx%d %s, output %r",
            path.name,
            self._input_name,
            self.input_spec.width,
            self.input_spec.height,
            self.input_spec.layout,
            self._output_name,
        )

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def run(self, frame: VideoFrame) -> tuple[np.ndarray, PreprocessMeta]:
        session = self._session
        if session is None:
            raise RuntimeError("object model is not loaded")
        canvas, meta = letterbox(frame.image, self.input_spec, bool(self.settings["letterbox"]))
        tensor = to_input_tensor(canvas, self.input_spec.layout)
        output = session.run([self._output_name], {self._input_name: tensor})[0]
        return np.asarray(output), meta

    def decode(self, raw: tuple[np.ndarray, PreprocessMeta], frame: VideoFrame) -> list[BoundingBoxDetection]:
        output, meta = raw
        return self.decoder.decode(output, meta)

    def close(self) -> None:
        self._session = None
