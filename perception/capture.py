"""
Video capture: webcam by index or video file. Keeps only the latest BGR frame.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import cv2

from perception.errors import CaptureError
from perception.models import VideoFrame
from perception.utils import now_ms

logger = logging.getLogger(__name__)


class VideoCaptureSource:
    """Unified source for webcam (by index) or video file."""

    def __init__(self) -> None:
        self._cap: cv2.VideoCapture | None = None
        self._source_path: str | None = None  # None = webcam
        self._camera_index: int = 0

    def open_camera(self, index: int = 0, resolution: tuple[int, int] | None = None) -> bool:
        """Open default or specified webcam. Returns True on success."""
        self.close()
        # On Windows, DirectShow opens much faster than the default MSMF backend
        if sys.platform == "win32":
            self._cap = cv2.VideoCapture(index, cv2.CAP_DSHOW)
        else:
            self._cap = cv2.VideoCapture(index)
        if resolution is not None and self._cap.isOpened():
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, resolution[0])
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, resolution[1])
        self._source_path = None
        self._camera_index = index
        return self._cap.isOpened()

    def open_file(self, path: str | Path) -> bool:
        """Open a video file. Returns True on success."""
        self.close()
        path_str = str(path)
        self._cap = cv2.VideoCapture(path_str)
        self._source_path = path_str
        return self._cap.isOpened()

    def close(self) -> None:
        """Release the current source."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._source_path = None

    def is_opened(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def read(self) -> tuple[bool, cv2.typing.MatLike | None]:
        """Read next frame. Returns (success, frame_bgr)."""
        if self._cap is None:
            return False, None
        return self._cap.read()

    def get_fps(self) -> float:
        """Source FPS (e.g. to pace file playback)."""
        if self._cap is None:
            return 30.0
        fps = self._cap.get(cv2.CAP_PROP_FPS)
        return fps if fps > 0 else 30.0

    @property
    def source_path(self) -> str | None:
        return self._source_path


class FrameSource:
    """Live frame source shared read-only by every detector and the sink.

    ``run()`` reads frames in a worker thread and publishes each as the new
    latest frame; nothing is queued.
    """

    def __init__(self, capture: VideoCaptureSource | None = None) -> None:
        self._capture = capture or VideoCaptureSource()
        self._latest: VideoFrame | None = None
        self._index = 0
        self._running = False

    def open(self, device: int | str = 0, resolution: tuple[int, int] | None = None) -> None:
        """Open a camera index or a video file path. Raises CaptureError, no retry."""
        if isinstance(device, int) or (isinstance(device, str) and device.isdigit()):
            ok = self._capture.open_camera(int(device), resolution)
            what = f"camera {device}"
        else:
            ok = self._capture.open_file(device)
            what = f"video {device}"
        if not ok:
            self._capture.close()
            raise CaptureError(f"Unable to open {what}. Check the device and camera permissions.")
        logger.info("Opened %s", what)

    def close(self) -> None:
        self._running = False
        self._capture.close()
        self._latest = None

    @property
    def width(self) -> int:
        return self._latest.width if self._latest is not None else 0

    @property
    def height(self) -> int:
        return self._latest.height if self._latest is not None else 0

    def is_ready(self) -> bool:
        """A decoded frame is available and has a non-zero size."""
        return self._latest is not None and self._latest.width > 0 and self._latest.height > 0

    def latest(self) -> VideoFrame | None:
        return self._latest

    def push(self, image) -> VideoFrame:
        """Publish ``image`` as the latest frame."""
        self._index += 1
        frame = VideoFrame.from_image(image, now_ms(), self._index)
        self._latest = frame
        return frame

    async def run(self) -> None:
        """Read until stopped or the stream ends. Read failures are not retried."""
        if not self._capture.is_opened():
            raise CaptureError("Capture source is not open")
        # Files are paced at their own rate; cameras block in read() anyway.
        pace_s = 1.0 / self._capture.get_fps() if self._capture.source_path else 0.0
        self._running = True
        while self._running:
            ok, image = await asyncio.to_thread(self._capture.read)
            if not self._running:
                break
            if not ok or image is None:
                logger.info("Video stream ended")
                break
            self.push(image)
            await asyncio.sleep(pace_s)
        self._running = False

    def stop(self) -> None:
        self._running = False
