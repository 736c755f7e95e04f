"""
Detector registry: maps each capability to its runtime class.

Runtimes are imported lazily so that the MediaPipe and onnxruntime stacks are
only pulled in for the capabilities actually used.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

from perception.models import Capability

if TYPE_CHECKING:
    from detectors.base import DetectorBase

# capability -> (module, class name)
_BUILTIN_DETECTORS: dict[Capability, tuple[str, str]] = {
    Capability.HAND: ("detectors.hand", "HandDetector"),
    Capability.FACE: ("detectors.face", "FaceDetector"),
    Capability.BODY: ("detectors.body", "BodyDetector"),
    Capability.OBJECT: ("detectors.object_detector", "ObjectDetector"),
}


def detector_class(capability: Capability | str) -> type[DetectorBase]:
    module_name, class_name = _BUILTIN_DETECTORS[Capability(capability)]
    module = importlib.import_module(module_name)
    return getattr(module, class_name)


def create_detector(
    capability: Capability | str, variant: str | None = None, settings: dict[str, Any] | None = None
) -> DetectorBase:
    """Instantiate (not load) the detector for ``capability``."""
    return detector_class(capability)(variant, settings)
