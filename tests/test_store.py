"""
Tests for the latest-only detection store.
"""

from perception.models import BoundingBoxDetection, Capability
from perception.store import DetectionStore

BOX = BoundingBoxDetection(0.0, 0.0, 5.0, 5.0, "cup", 41, 0.8)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestDetectionStore:
    def test_publish_overwrites_slot(self):
        store = DetectionStore()
        store.publish(Capability.OBJECT, [BOX], timestamp_ms=1.0)
        store.publish(Capability.OBJECT, [], timestamp_ms=2.0)
        snap = store.latest(Capability.OBJECT)
        assert snap.results == ()
        assert snap.timestamp_ms == 2.0

    def test_slots_are_independent(self):
        store = DetectionStore()
        store.publish(Capability.OBJECT, [BOX], timestamp_ms=1.0)
        store.publish(Capability.HAND, [], timestamp_ms=1.0)
        store.clear(Capability.HAND)
        assert store.latest(Capability.HAND) is None
        assert store.latest(Capability.OBJECT).results == (BOX,)

    def test_snapshot_is_immutable_copy(self):
        store = DetectionStore()
        results = [BOX]
        store.publish(Capability.OBJECT, results, timestamp_ms=1.0)
        results.append(BOX)
        assert len(store.latest(Capability.OBJECT).results) == 1

    def test_subscribers_fire_once_per_publish(self):
        store = DetectionStore()
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.publish(Capability.FACE, [], timestamp_ms=1.0)
        store.publish(Capability.FACE, [], timestamp_ms=2.0)
        assert [s.timestamp_ms for s in seen] == [1.0, 2.0]
        unsubscribe()
        store.publish(Capability.FACE, [], timestamp_ms=3.0)
        assert len(seen) == 2

    def test_clear_does_not_notify(self):
        store = DetectionStore()
        seen = []
        store.subscribe(seen.append)
        store.publish(Capability.FACE, [], timestamp_ms=1.0)
        store.clear(Capability.FACE)
        store.clear_all()
        assert len(seen) == 1

    def test_failing_subscriber_does_not_block_others(self):
        store = DetectionStore()
        seen = []

        def broken(snapshot):
            raise RuntimeError("consumer bug")

        store.subscribe(broken)
        store.subscribe(seen.append)
        store.publish(Capability.BODY, [], timestamp_ms=1.0)
        assert len(seen) == 1

    def test_fresh_respects_age(self):
        clock = FakeClock(1000.0)
        store = DetectionStore(clock=clock)
        store.publish(Capability.OBJECT, [BOX])
        clock.now = 1400.0
        assert store.fresh(Capability.OBJECT) is not None
        clock.now = 1501.0
        assert store.fresh(Capability.OBJECT) is None
        assert store.latest(Capability.OBJECT) is not None
        assert store.latest(Capability.OBJECT).is_stale(clock.now)
