"""
Model lifecycle: one handle per capability, loaded, swapped and retired independently.

The registry is owned by the pipeline root and passed by reference. Every
change that should restart a capability's inference loop (activation,
deactivation, variant swap start, variant swap finished) bumps the handle's
``version`` and calls ``on_restart``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from detectors.base import DetectorBase
from perception.errors import ModelLoadError, PerceptionError
from perception.models import Capability

logger = logging.getLogger(__name__)

DetectorFactory = Callable[[Capability, Optional[str], dict], DetectorBase]
SettingsProvider = Callable[[Capability], dict]


@dataclass(eq=False)
class DetectorHandle:
    capability: Capability
    variant: str | None = None
    detector: DetectorBase | None = None
    loading: bool = False
    active: bool = False
    last_error: PerceptionError | None = None
    version: int = 0
    in_flight: asyncio.Future | None = field(default=None, repr=False)
    load_task: asyncio.Task | None = field(default=None, repr=False)
    _load_token: int = field(default=0, repr=False)

    @property
    def loaded(self) -> bool:
        return self.detector is not None and not self.loading and self.detector.loaded

    @property
    def busy(self) -> bool:
        """True while an inference call on this handle has not completed."""
        return self.in_flight is not None and not self.in_flight.done()

    def status(self) -> dict[str, Any]:
        return {
            "capability": self.capability.value,
            "variant": self.variant,
            "active": self.active,
            "loading": self.loading,
            "loaded": self.loaded,
            "error": self.last_error.message if self.last_error else None,
        }


class ModelRegistry:
    """Owns each capability's model instance and its load state."""

    def __init__(
        self,
        factory: DetectorFactory,
        settings: SettingsProvider | None = None,
        on_restart: Callable[[Capability, int], None] | None = None,
        on_error: Callable[[Capability, PerceptionError], None] | None = None,
    ) -> None:
        self._factory = factory
        self._settings = settings or (lambda capability: {})
        self._handles: dict[Capability, DetectorHandle] = {}
        self.on_restart = on_restart
        self.on_error = on_error
        self._closed = False

    def handle(self, capability: Capability) -> DetectorHandle:
        """The capability's handle, created on first use."""
        capability = Capability(capability)
        h = self._handles.get(capability)
        if h is None:
            h = DetectorHandle(capability=capability)
            self._handles[capability] = h
        return h

    def handles(self) -> list[DetectorHandle]:
        return list(self._handles.values())

    def is_ready(self, capability: Capability) -> bool:
        h = self._handles.get(Capability(capability))
        return h is not None and h.active and h.loaded

    def activate(self, capability: Capability) -> DetectorHandle:
        h = self.handle(capability)
        h.active = True
        if h.detector is None and not h.loading:
            self._start_load(h, bump_when_done=False)
        self._bump(h)
        return h

    def deactivate(self, capability: Capability) -> DetectorHandle:
        """Mark inactive. The model instance stays warm for the next activation."""
        h = self.handle(capability)
        h.active = False
        self._bump(h)
        return h

    def swap_variant(self, capability: Capability, variant: str) -> DetectorHandle:
        """Drop the current instance and load ``variant`` (right away only when active)."""
        h = self.handle(capability)
        if variant == h.variant and (h.detector is not None or h.loading):
            return h
        logger.info("Swapping %s model to variant %r", h.capability.value, variant)
        old = h.detector
        h.variant = variant
        h.detector = None
        h.loading = False
        h.last_error = None
        h._load_token += 1
        self._bump(h)
        if old is not None:
            self._retire(h, old)
        if h.active:
            self._start_load(h, bump_when_done=True)
        return h

    def unload(self, capability: Capability) -> None:
        h = self._handles.pop(Capability(capability), None)
        if h is None:
            return
        h.active = False
        h._load_token += 1
        self._bump(h)
        if h.detector is not None:
            self._retire(h, h.detector)
            h.detector = None

    async def wait_loaded(self, capability: Capability) -> bool:
        h = self.handle(capability)
        while h.load_task is not None and not h.load_task.done():
            await asyncio.shield(h.load_task)
        return h.loaded

    async def close(self) -> None:
        self._closed = True
        pending = [h.load_task for h in self._handles.values() if h.load_task and not h.load_task.done()]
        for capability in list(self._handles):
            self.unload(capability)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------ internals

    def _bump(self, h: DetectorHandle) -> None:
        h.version += 1
        if self.on_restart is not None and not self._closed:
            self.on_restart(h.capability, h.version)

    def _retire(self, h: DetectorHandle, detector: DetectorBase) -> None:
        """Close ``detector`` now, or once its in-flight call has completed."""
        detector.stop()
        if h.busy:
            h.in_flight.add_done_callback(lambda _: self._close_quietly(detector))
        else:
            self._close_quietly(detector)

    @staticmethod
    def _close_quietly(detector: DetectorBase) -> None:
        try:
            detector.close()
        except Exception:  # noqa: BLE001
            logger.exception("Error closing %s model", detector.capability.value)

    def _start_load(self, h: DetectorHandle, bump_when_done: bool) -> None:
        h._load_token += 1
        h.loading = True
        h.last_error = None
        loop = asyncio.get_running_loop()
        h.load_task = loop.create_task(self._load(h, h._load_token, bump_when_done))

    async def _load(self, h: DetectorHandle, token: int, bump_when_done: bool) -> None:
        capability = h.capability
        logger.info("Loading %s model (variant %r)...", capability.value, h.variant)
        detector: DetectorBase | None = None
        try:
            detector = self._factory(capability, h.variant, dict(self._settings(capability)))
            await asyncio.to_thread(detector.load)
        except Exception as e:  # noqa: BLE001
            if token != h._load_token:
                return
            h.loading = False
            h.last_error = ModelLoadError(
                f"Failed to load {capability.value} model: {e}",
                capability=capability.value,
                details={"variant": h.variant},
            )
            logger.error("%s", h.last_error.message)
            if self.on_error is not None:
                self.on_error(capability, h.last_error)
            return

        if token != h._load_token or self._closed:
            # Superseded by a newer swap or unload while loading.
            self._close_quietly(detector)
            return
        h.detector = detector
        h.variant = detector.variant
        h.loading = False
        logger.info("%s model ready (variant %r)", capability.value, h.variant)
        if bump_when_done and h.active:
            self._bump(h)
