"""
Tests for the latest-frame capture source.
"""

import asyncio

import numpy as np
import pytest

from perception.capture import FrameSource
from perception.errors import CaptureError


class StubCapture:
    """Stands in for VideoCaptureSource: yields a fixed number of frames, then ends."""

    def __init__(self, frames: int = 3, opens: bool = True) -> None:
        self.remaining = frames
        self.opens = opens
        self.opened = False
        self.source_path = None
        self.opened_with = None

    def open_camera(self, index, resolution=None):
        self.opened_with = ("camera", index, resolution)
        self.opened = self.opens
        return self.opens

    def open_file(self, path):
        self.opened_with = ("file", str(path))
        self.source_path = str(path)
        self.opened = self.opens
        return self.opens

    def close(self):
        self.opened = False

    def is_opened(self):
        return self.opened

    def get_fps(self):
        return 1000.0

    def read(self):
        if self.remaining <= 0:
            return False, None
        self.remaining -= 1
        return True, np.zeros((120, 160, 3), dtype=np.uint8)


class TestFrameSource:
    def test_not_ready_before_first_frame(self):
        source = FrameSource(StubCapture())
        assert not source.is_ready()
        assert source.latest() is None
        assert (source.width, source.height) == (0, 0)

    def test_open_failure_raises(self):
        source = FrameSource(StubCapture(opens=False))
        with pytest.raises(CaptureError) as exc:
            source.open(0)
        assert exc.value.code == "capture_error"

    def test_numeric_string_opens_camera(self):
        stub = StubCapture()
        FrameSource(stub).open("2", (640, 480))
        assert stub.opened_with == ("camera", 2, (640, 480))

    def test_path_opens_file(self):
        stub = StubCapture()
        FrameSource(stub).open("clip.mp4")
        assert stub.opened_with == ("file", "clip.mp4")

    def test_run_keeps_latest_until_stream_ends(self):
        source = FrameSource(StubCapture(frames=3))
        source.open("clip.mp4")
        asyncio.run(source.run())
        frame = source.latest()
        assert source.is_ready()
        assert frame.index == 3
        assert (frame.width, frame.height) == (160, 120)
        assert (source.width, source.height) == (160, 120)

    def test_run_requires_open_source(self):
        with pytest.raises(CaptureError):
            asyncio.run(FrameSource(StubCapture()).run())

    def test_close_drops_frame(self):
        source = FrameSource(StubCapture())
        source.push(np.zeros((10, 10, 3), dtype=np.uint8))
        assert source.is_ready()
        source.close()
        assert not source.is_ready()
