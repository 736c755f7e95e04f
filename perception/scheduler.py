"""
Per-capability inference scheduling.

State machine::

    IDLE -> DEBOUNCING -> POLLING -> RUNNING -> STOPPED
                             ^          |
                             +----------+  (frame source or model not ready)

The next inference call is only issued after the previous one has resolved,
so a capability never has more than one call in flight. Cancelling a loop
never interrupts a running call; the call's result is dropped instead, and the
handle stays busy until the call has actually finished.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Protocol

from perception.errors import DecodeError, InferenceError, PerceptionError
from perception.lifecycle import DetectorHandle, ModelRegistry
from perception.models import Capability, VideoFrame
from perception.store import DetectionStore
from perception.utils import FPSCounter, now_ms

logger = logging.getLogger(__name__)

# Wait used when the newest frame has already been processed.
NEW_FRAME_WAIT_S = 0.005


class FrameSourceLike(Protocol):
    def is_ready(self) -> bool: ...

    def latest(self) -> VideoFrame | None: ...


class SchedulerState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    POLLING = "polling"
    RUNNING = "running"
    STOPPED = "stopped"


def _consume_result(fut: asyncio.Future) -> None:
    # Orphaned calls (loop cancelled while waiting) must not log "exception never retrieved".
    if not fut.cancelled():
        fut.exception()


class InferenceScheduler:
    """Drives one capability's detector over the live frame source."""

    def __init__(
        self,
        capability: Capability,
        registry: ModelRegistry,
        source: FrameSourceLike,
        store: DetectionStore,
        *,
        debounce_s: float = 0.3,
        poll_interval_s: float = 0.2,
        frame_interval_s: float = 0.0,
        on_error: Callable[[Capability, PerceptionError], None] | None = None,
    ) -> None:
        self.capability = Capability(capability)
        self._registry = registry
        self._source = source
        self._store = store
        self._debounce_s = debounce_s
        self._poll_interval_s = poll_interval_s
        self._frame_interval_s = frame_interval_s
        self._on_error = on_error
        self._task: asyncio.Task | None = None
        self._generation = 0
        self._last_frame_index: int | None = None
        self.state = SchedulerState.IDLE
        self.rate = FPSCounter()
        self.last_latency_ms = 0.0
        self.inference_count = 0

    @property
    def handle(self) -> DetectorHandle:
        return self._registry.handle(self.capability)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def restart(self) -> None:
        """Stop whatever is running, then debounce, poll and run again if active."""
        self.stop()
        h = self.handle
        if isinstance(h.last_error, InferenceError):
            h.last_error = None
        if not h.active:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation), name=f"inference-{self.capability.value}"
        )

    def stop(self) -> None:
        """Cancel timers and the loop, stop the model, wipe this capability's results."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._last_frame_index = None
        h = self.handle
        if h.detector is not None:
            h.detector.stop()
        self._store.clear(self.capability)
        if self.state is not SchedulerState.IDLE:
            self.state = SchedulerState.STOPPED
        self.rate.reset()

    async def wait_stopped(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------ loop

    def _frame(self) -> VideoFrame | None:
        if not self._source.is_ready():
            return None
        frame = self._source.latest()
        if frame is None or frame.width <= 0 or frame.height <= 0:
            return None
        return frame

    def _ready(self, h: DetectorHandle) -> bool:
        return h.active and h.loaded and not h.busy and self._frame() is not None

    @staticmethod
    def _blocked(h: DetectorHandle) -> bool:
        return not h.active or (h.last_error is not None and not h.loading)

    async def _run(self, generation: int) -> None:
        self.state = SchedulerState.DEBOUNCING
        await asyncio.sleep(self._debounce_s)
        self.state = SchedulerState.POLLING
        while generation == self._generation:
            h = self.handle
            if not self._ready(h):
                if self._blocked(h):
                    self.state = SchedulerState.STOPPED
                    return
                if self.state is SchedulerState.RUNNING:
                    self.state = SchedulerState.POLLING
                await asyncio.sleep(self._poll_interval_s)
                continue
            self.state = SchedulerState.RUNNING
            frame = self._frame()
            if frame is None:
                continue
            if frame.index == self._last_frame_index:
                await asyncio.sleep(NEW_FRAME_WAIT_S)
                continue
            if not await self._infer_once(h, frame, generation):
                return
            await asyncio.sleep(self._frame_interval_s)

    async def _infer_once(self, h: DetectorHandle, frame: VideoFrame, generation: int) -> bool:
        detector = h.detector
        if detector is None:
            return False
        started = now_ms()
        call = asyncio.ensure_future(detector.infer(frame))
        call.add_done_callback(_consume_result)
        h.in_flight = call
        self._last_frame_index = frame.index
        try:
            raw = await asyncio.shield(call)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            if self._is_current(h, detector, generation):
                self._fail(h, e)
            return False

        if not self._is_current(h, detector, generation):
            logger.debug("Dropping %s result from a superseded call", self.capability.value)
            return False

        try:
            results = detector.decode(raw, frame)
        except Exception as e:  # noqa: BLE001
            error = DecodeError(
                f"Failed to decode {self.capability.value} output: {e}", capability=self.capability.value
            )
            logger.warning("%s", error.message)
            results = []

        finished = now_ms()
        self.last_latency_ms = finished - started
        self.inference_count += 1
        self.rate.tick(finished)
        self._store.publish(self.capability, results, timestamp_ms=finished)
        return True

    def _is_current(self, h: DetectorHandle, detector: object, generation: int) -> bool:
        return generation == self._generation and h.active and h.detector is detector

    def _fail(self, h: DetectorHandle, exc: Exception) -> None:
        error = InferenceError(
            f"{self.capability.value} inference failed: {exc}",
            capability=self.capability.value,
        )
        h.last_error = error
        if h.detector is not None:
            h.detector.stop()
        self._store.clear(self.capability)
        self.state = SchedulerState.STOPPED
        logger.error("%s", error.message)
        if self._on_error is not None:
            self._on_error(self.capability, error)
