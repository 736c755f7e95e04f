"""
Pipeline root: owns the model registry, the result store, one scheduler per
capability and the frame sink, and wires their callbacks together.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from perception.capture import FrameSource
from perception.config import PipelineConfig
from perception.errors import PerceptionError
from perception.lifecycle import DetectorFactory, DetectorHandle, ModelRegistry
from perception.models import Capability, FrameResults
from perception.scheduler import FrameSourceLike, InferenceScheduler
from perception.sink import FrameSink
from perception.store import DetectionSnapshot, DetectionStore

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Capability | None, PerceptionError], None]


class PerceptionPipeline:
    """Toggle capabilities on a live frame source and read their latest results.

    All methods except ``run`` and ``close`` are synchronous and must be called
    from the thread running the event loop.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        factory: DetectorFactory | None = None,
        source: FrameSourceLike | None = None,
        *,
        on_frame: Callable[[FrameResults], None] | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        if factory is None:
            from detectors import create_detector

            factory = create_detector
        self._owns_source = source is None
        self.source = source if source is not None else FrameSource()
        self.on_error = on_error
        self.capture_error: PerceptionError | None = None
        self.store = DetectionStore()
        self.registry = ModelRegistry(
            factory,
            settings=lambda capability: self.config.detector_settings(capability.value),
            on_restart=self._restart,
            on_error=self._report,
        )
        sched = self.config.scheduler
        self.schedulers: dict[Capability, InferenceScheduler] = {}
        for capability in Capability:
            interval = sched.object_frame_interval_s if capability is Capability.OBJECT else sched.frame_interval_s
            self.schedulers[capability] = InferenceScheduler(
                capability,
                self.registry,
                self.source,
                self.store,
                debounce_s=sched.debounce_s,
                poll_interval_s=sched.poll_interval_s,
                frame_interval_s=interval,
                on_error=self._report,
            )
        self.sink = FrameSink(
            self.source,
            self.store,
            fps=self.config.sink.fps,
            fade_after_ms=self.config.sink.fade_after_ms,
            stale_after_ms=self.config.sink.stale_after_ms,
            on_frame=on_frame,
        )
        self._stopped: asyncio.Event | None = None
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------ commands

    def activate(self, capability: Capability, variant: str | None = None) -> DetectorHandle:
        capability = Capability(capability)
        if variant is not None and variant != self.registry.handle(capability).variant:
            self.registry.swap_variant(capability, variant)
        logger.info("Activating %s", capability.value)
        return self.registry.activate(capability)

    def deactivate(self, capability: Capability) -> DetectorHandle:
        capability = Capability(capability)
        logger.info("Deactivating %s", capability.value)
        return self.registry.deactivate(capability)

    def toggle(self, capability: Capability) -> bool:
        """Flip ``capability`` and return its new active state."""
        if self.registry.handle(capability).active:
            self.deactivate(capability)
            return False
        self.activate(capability)
        return True

    def swap_variant(self, capability: Capability, variant: str) -> DetectorHandle:
        return self.registry.swap_variant(Capability(capability), variant)

    # ------------------------------------------------------------------ queries

    def latest(self, capability: Capability) -> DetectionSnapshot | None:
        return self.store.latest(Capability(capability))

    def subscribe(self, callback: Callable[[DetectionSnapshot], None]) -> Callable[[], None]:
        return self.store.subscribe(callback)

    def errors(self) -> dict[str, PerceptionError]:
        """Current errors keyed by capability name, plus ``"capture"``."""
        out: dict[str, PerceptionError] = {}
        if self.capture_error is not None:
            out["capture"] = self.capture_error
        for h in self.registry.handles():
            if h.last_error is not None:
                out[h.capability.value] = h.last_error
        return out

    def status(self) -> list[dict[str, Any]]:
        rows = []
        for capability, scheduler in self.schedulers.items():
            row = self.registry.handle(capability).status()
            row.update(
                state=scheduler.state.value,
                latency_ms=round(scheduler.last_latency_ms, 1),
                fps=round(scheduler.rate.rolling_fps, 1),
                inferences=scheduler.inference_count,
            )
            rows.append(row)
        return rows

    # ------------------------------------------------------------------ lifecycle

    async def run(self) -> None:
        """Open the camera (when this pipeline owns it), run capture and sink until ``stop``."""
        self._stopped = asyncio.Event()
        loop = asyncio.get_running_loop()
        if self._owns_source:
            camera = self.config.camera
            resolution = tuple(camera.resolution) if camera.resolution else None
            try:
                self.source.open(camera.device_id, resolution)
            except PerceptionError as e:
                self.capture_error = e
                self._report(None, e)
                raise
            self._tasks.append(loop.create_task(self.source.run(), name="capture"))
        self._tasks.append(loop.create_task(self.sink.run(), name="sink"))
        try:
            await self._stopped.wait()
        finally:
            await self.close()

    def stop(self) -> None:
        if self._stopped is not None:
            self._stopped.set()

    async def close(self) -> None:
        for scheduler in self.schedulers.values():
            scheduler.stop()
        self.sink.stop()
        if self._owns_source:
            self.source.stop()
        await self.registry.close()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_source:
            self.source.close()
        self.store.clear_all()

    # ------------------------------------------------------------------ callbacks

    def _restart(self, capability: Capability, version: int) -> None:
        logger.debug("Restarting %s scheduler (version %d)", capability.value, version)
        self.schedulers[capability].restart()

    def _report(self, capability: Capability | None, error: PerceptionError) -> None:
        if self.on_error is not None:
            try:
                self.on_error(capability, error)
            except Exception:  # noqa: BLE001
                logger.exception("Error callback failed")
