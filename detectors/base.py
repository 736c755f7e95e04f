"""
Base interface every capability's model runtime must implement.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from perception.models import Capability, Detection, VideoFrame


class DetectorBase(ABC):
    """One capability's model. Subclass and implement all abstract methods.

    ``load`` and ``run`` block and are called from a worker thread; the
    scheduler guarantees ``run`` is never entered twice at the same time.
    """

    capability: Capability
    display_name: str = ""
    # Empty means any variant string is accepted (e.g. a model file path).
    variants: tuple[str, ...] = ("default",)

    def __init__(self, variant: str | None = None, settings: dict[str, Any] | None = None) -> None:
        merged = self.default_settings()
        merged.update(settings or {})
        self.settings = merged
        self.variant = variant or merged.get("variant") or (self.variants[0] if self.variants else "")
        if self.variants and self.variant not in self.variants:
            raise ValueError(
                f"Unknown {self.capability.value} variant {self.variant!r}. Known: {list(self.variants)}"
            )

    @staticmethod
    @abstractmethod
    def default_settings() -> dict[str, Any]:
        """Return default settings dict (e.g. min_detection_confidence)."""
        ...

    @abstractmethod
    def load(self) -> None:
        """Create the underlying model. Raises on failure."""
        ...

    @property
    @abstractmethod
    def loaded(self) -> bool:
        ...

    @abstractmethod
    def run(self, frame: VideoFrame) -> Any:
        """Run the model on one frame and return its raw output."""
        ...

    @abstractmethod
    def decode(self, raw: Any, frame: VideoFrame) -> list[Detection]:
        """Turn raw output into typed results in video-pixel space."""
        ...

    async def infer(self, frame: VideoFrame) -> Any:
        return await asyncio.to_thread(self.run, frame)

    def stop(self) -> None:
        """Stop any loop the runtime drives on its own. Most runtimes have none."""

    @abstractmethod
    def close(self) -> None:
        """Release resources (e.g. the MediaPipe task instance)."""
        ...
