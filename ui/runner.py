"""
Pipeline runner: hosts the pipeline's asyncio loop on a worker thread and
emits painted frames and errors as Qt signals so the UI never blocks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from PySide6.QtCore import QObject, QThread, Signal

from perception.config import PipelineConfig
from perception.errors import PerceptionError
from perception.models import Capability, FrameResults
from perception.pipeline import PerceptionPipeline

logger = logging.getLogger(__name__)


class PipelineRunner(QObject):
    """Worker that runs capture, schedulers and the sink on its own event loop."""

    # Emit (frame_results, display_fps)
    frame_painted = Signal(object, float)
    # Emit (capability name or "capture", message)
    error_occurred = Signal(str, str)
    # Emit per-capability status rows
    status_changed = Signal(object)
    # Emit once the loop accepts commands
    started = Signal()
    # Emit when the loop has exited
    stopped = Signal()

    def __init__(self, config: PipelineConfig, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._config = config
        self._thread: QThread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pipeline: PerceptionPipeline | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.isRunning()

    def start(self) -> None:
        """Start the pipeline in a background thread."""
        if self.running:
            return
        self._thread = QThread()
        self.moveToThread(self._thread)
        self._thread.started.connect(self._run_loop)
        self._thread.start()

    def stop(self) -> None:
        """Request stop; the loop closes the pipeline and the thread finishes."""
        self._call(lambda p: p.stop())

    def activate(self, capability: Capability, variant: str | None = None) -> None:
        self._call(lambda p: p.activate(capability, variant))

    def deactivate(self, capability: Capability) -> None:
        self._call(lambda p: p.deactivate(capability))

    def swap_variant(self, capability: Capability, variant: str) -> None:
        self._call(lambda p: p.swap_variant(capability, variant))

    def set_object_labels(self, labels: list[str]) -> None:
        """New label list; takes effect on the next object model (re)load."""

        def apply(p: PerceptionPipeline) -> None:
            p.config.object_detector.labels = list(labels)
            h = p.registry.handle(Capability.OBJECT)
            variant, was_active = h.variant, h.active
            if variant:
                p.registry.unload(Capability.OBJECT)
                if was_active:
                    p.activate(Capability.OBJECT, variant)

        self._call(apply)

    def _call(self, fn: Callable[[PerceptionPipeline], Any]) -> None:
        loop, pipeline = self._loop, self._pipeline
        if loop is None or pipeline is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._guarded, fn, pipeline)

    def _guarded(self, fn: Callable[[PerceptionPipeline], Any], pipeline: PerceptionPipeline) -> None:
        try:
            fn(pipeline)
        except PerceptionError as e:
            self.error_occurred.emit(e.capability or "pipeline", e.message)
        except Exception as e:  # noqa: BLE001
            logger.exception("Pipeline command failed")
            self.error_occurred.emit("pipeline", str(e))
        self.status_changed.emit(pipeline.status())

    def _on_frame(self, composed: FrameResults) -> None:
        pipeline = self._pipeline
        if pipeline is None:
            return
        self.frame_painted.emit(composed, pipeline.sink.rate.rolling_fps)

    def _on_error(self, capability: Capability | None, error: PerceptionError) -> None:
        self.error_occurred.emit(capability.value if capability else "capture", error.message)
        if self._pipeline is not None:
            self.status_changed.emit(self._pipeline.status())

    async def _report_status(self, pipeline: PerceptionPipeline) -> None:
        while True:
            await asyncio.sleep(0.5)
            self.status_changed.emit(pipeline.status())

    async def _main(self) -> None:
        pipeline = PerceptionPipeline(self._config, on_frame=self._on_frame, on_error=self._on_error)
        self._pipeline = pipeline
        self._loop = asyncio.get_running_loop()
        status_task = self._loop.create_task(self._report_status(pipeline))
        self.started.emit()
        try:
            await pipeline.run()
        except PerceptionError:
            pass  # already reported through _on_error
        finally:
            status_task.cancel()
            await asyncio.gather(status_task, return_exceptions=True)

    def _run_loop(self) -> None:
        """Runs in worker thread until the pipeline stops."""
        try:
            asyncio.run(self._main())
        except Exception as e:  # noqa: BLE001
            logger.exception("Pipeline loop crashed")
            self.error_occurred.emit("pipeline", str(e))
        finally:
            self._loop = None
            self._pipeline = None
            self.stopped.emit()

    def finish_thread(self) -> None:
        """Call after stopped signal: quit and wait for thread."""
        if self._thread is not None and self._thread.isRunning():
            self._thread.quit()
            self._thread.wait(2000)
        self._thread = None
