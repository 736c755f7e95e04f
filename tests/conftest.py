"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

# Project root on the path so the flat packages import without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from detectors.base import DetectorBase  # noqa: E402
from perception.config import PipelineConfig, SchedulerConfig  # noqa: E402
from perception.models import BoundingBoxDetection, Capability, LandmarkSet, VideoFrame  # noqa: E402


class FakeSource:
    """Frame source that hands out a new frame on every read."""

    def __init__(self, width: int = 64, height: int = 48, advance: bool = True) -> None:
        self.width = width
        self.height = height
        self.advance = advance
        self.ready = True
        self._index = 0
        self._clock = 0.0

    def is_ready(self) -> bool:
        return self.ready

    def latest(self) -> Optional[VideoFrame]:
        if not self.ready:
            return None
        if self.advance or self._index == 0:
            self._index += 1
            self._clock += 33.0
        image = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        return VideoFrame(image, self.width, self.height, self._clock, self._index)


@dataclass
class Probe:
    """Shared counters and switches for one capability's fake detectors."""

    loads: int = 0
    closes: int = 0
    stops: int = 0
    calls: int = 0
    in_flight: int = 0
    max_in_flight: int = 0
    delay_s: float = 0.005
    gate: Optional[asyncio.Event] = None
    fail_load: bool = False
    fail_infer: bool = False
    fail_decode: bool = False


class FakeDetector(DetectorBase):
    variants = ()

    def __init__(self, capability: Capability, variant: Optional[str], settings: Dict[str, Any], probe: Probe) -> None:
        self.capability = capability
        self.probe = probe
        self._loaded = False
        super().__init__(variant, settings)

    @staticmethod
    def default_settings() -> Dict[str, Any]:
        return {}

    def load(self) -> None:
        self.probe.loads += 1
        if self.probe.fail_load:
            raise RuntimeError("model file is corrupt")
        self._loaded = True

    @property
    def loaded(self) -> bool:
        return self._loaded

    def run(self, frame: VideoFrame) -> Any:
        return frame.index

    async def infer(self, frame: VideoFrame) -> Any:
        p = self.probe
        p.calls += 1
        p.in_flight += 1
        p.max_in_flight = max(p.max_in_flight, p.in_flight)
        try:
            if p.gate is not None:
                await p.gate.wait()
            else:
                await asyncio.sleep(p.delay_s)
            if p.fail_infer:
                raise RuntimeError("inference exploded")
            return frame.index
        finally:
            p.in_flight -= 1

    def decode(self, raw: Any, frame: VideoFrame) -> List[BoundingBoxDetection]:
        if self.probe.fail_decode:
            raise ValueError("unexpected tensor")
        return [BoundingBoxDetection(1.0, 2.0, 10.0, 10.0, "thing", 0, 0.9)]

    def stop(self) -> None:
        self.probe.stops += 1

    def close(self) -> None:
        self.probe.closes += 1
        self._loaded = False


class FakeFactory:
    """Detector factory that records every instance it creates."""

    def __init__(self) -> None:
        self.probes: Dict[Capability, Probe] = {c: Probe() for c in Capability}
        self.created: List[FakeDetector] = []

    def __call__(self, capability: Capability, variant: Optional[str], settings: Dict[str, Any]) -> FakeDetector:
        det = FakeDetector(Capability(capability), variant, settings, self.probes[Capability(capability)])
        self.created.append(det)
        return det


async def wait_for(predicate, timeout: float = 1.0, interval: float = 0.005) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return bool(predicate())


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def fake_factory():
    return FakeFactory()


@pytest.fixture
def fast_config():
    """Pipeline config with scheduling delays short enough for tests."""
    return PipelineConfig(
        scheduler=SchedulerConfig(
            debounce_s=0.01,
            poll_interval_s=0.01,
            frame_interval_s=0.0,
            object_frame_interval_s=0.0,
        )
    )


def make_landmarks(points, confidence=None) -> LandmarkSet:
    pts = np.asarray(points, dtype=np.float64)
    conf = None if confidence is None else np.asarray(confidence, dtype=np.float64)
    return LandmarkSet(points=pts, confidence=conf)


def similarity_transform(points, angle: float, scale: float, shift) -> np.ndarray:
    """Rotate by ``angle``, scale, then translate (x, y columns only)."""
    pts = np.asarray(points, dtype=np.float64).copy()
    c, s = np.cos(angle), np.sin(angle)
    rot = np.array([[c, -s], [s, c]])
    pts[:, :2] = (pts[:, :2] @ rot.T) * scale + np.asarray(shift, dtype=np.float64)
    return pts
