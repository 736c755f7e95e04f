"""
Latest-only result store, one slot per capability.

Only the owning capability's scheduler writes its slot. Readers get immutable
snapshots and may subscribe to be told about every successful publish.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from perception.models import Capability, Detection
from perception.utils import now_ms

logger = logging.getLogger(__name__)

STALE_AFTER_MS = 500.0

Subscriber = Callable[["DetectionSnapshot"], None]


@dataclass(frozen=True)
class DetectionSnapshot:
    capability: Capability
    results: tuple[Detection, ...]
    timestamp_ms: float

    def age_ms(self, now: float | None = None) -> float:
        return (now_ms() if now is None else now) - self.timestamp_ms

    def is_stale(self, now: float | None = None, max_age_ms: float = STALE_AFTER_MS) -> bool:
        return self.age_ms(now) > max_age_ms


class DetectionStore:
    def __init__(self, clock: Callable[[], float] = now_ms) -> None:
        self._clock = clock
        self._slots: dict[Capability, DetectionSnapshot] = {}
        self._subscribers: list[Subscriber] = []

    def publish(
        self,
        capability: Capability,
        results: Iterable[Detection],
        timestamp_ms: float | None = None,
    ) -> DetectionSnapshot:
        """Overwrite ``capability``'s slot and notify subscribers once."""
        snapshot = DetectionSnapshot(
            capability=capability,
            results=tuple(results),
            timestamp_ms=self._clock() if timestamp_ms is None else timestamp_ms,
        )
        self._slots[capability] = snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Detection subscriber failed for %s", capability.value)
        return snapshot

    def clear(self, capability: Capability) -> None:
        self._slots.pop(capability, None)

    def clear_all(self) -> None:
        self._slots.clear()

    def latest(self, capability: Capability) -> DetectionSnapshot | None:
        return self._slots.get(capability)

    def fresh(
        self,
        capability: Capability,
        now: float | None = None,
        max_age_ms: float = STALE_AFTER_MS,
    ) -> DetectionSnapshot | None:
        """Latest snapshot, or None when it is older than ``max_age_ms``."""
        snapshot = self._slots.get(capability)
        if snapshot is None:
            return None
        if snapshot.is_stale(self._clock() if now is None else now, max_age_ms):
            return None
        return snapshot

    def snapshots(self) -> dict[Capability, DetectionSnapshot]:
        return dict(self._slots)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe
