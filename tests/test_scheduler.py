"""
Tests for per-capability inference scheduling through the pipeline root.
"""

import asyncio

from conftest import wait_for
from perception.errors import InferenceError, ModelLoadError
from perception.models import Capability
from perception.pipeline import PerceptionPipeline
from perception.scheduler import SchedulerState


class TestBackpressure:
    def test_rapid_toggles_never_stack_calls(self, fast_config, fake_factory, fake_source):
        probe = fake_factory.probes[Capability.HAND]
        probe.delay_s = 0.02

        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            # 11 flips inside ~50 ms, ending active
            for _ in range(11):
                pipeline.toggle(Capability.HAND)
                await asyncio.sleep(0.004)
            await asyncio.sleep(0.3)
            active = pipeline.registry.handle(Capability.HAND).active
            await pipeline.close()
            return active

        assert asyncio.run(scenario())
        assert probe.calls > 1
        assert probe.max_in_flight == 1
        assert probe.loads == 1

    def test_reactivation_waits_for_orphaned_call(self, fast_config, fake_factory, fake_source):
        probe = fake_factory.probes[Capability.FACE]

        async def scenario():
            probe.gate = asyncio.Event()
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            pipeline.activate(Capability.FACE)
            assert await wait_for(lambda: probe.calls == 1)
            pipeline.deactivate(Capability.FACE)
            pipeline.activate(Capability.FACE)
            await asyncio.sleep(0.1)
            calls_while_blocked = probe.calls
            probe.gate.set()
            published = await wait_for(lambda: pipeline.latest(Capability.FACE) is not None)
            await pipeline.close()
            return calls_while_blocked, published

        calls_while_blocked, published = asyncio.run(scenario())
        assert calls_while_blocked == 1
        assert published
        assert probe.max_in_flight == 1


class TestCancellation:
    def test_deactivation_mid_inference_drops_result(self, fast_config, fake_factory, fake_source):
        probe = fake_factory.probes[Capability.HAND]

        async def scenario():
            probe.gate = asyncio.Event()
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            published = []
            pipeline.subscribe(published.append)
            pipeline.activate(Capability.HAND)
            assert await wait_for(lambda: probe.calls == 1)
            pipeline.deactivate(Capability.HAND)
            cleared = pipeline.latest(Capability.HAND) is None
            probe.gate.set()
            await asyncio.sleep(0.05)
            latest = pipeline.latest(Capability.HAND)
            state = pipeline.schedulers[Capability.HAND].state
            await pipeline.close()
            return cleared, published, latest, state

        cleared, published, latest, state = asyncio.run(scenario())
        assert cleared
        assert published == []
        assert latest is None
        assert state is SchedulerState.STOPPED
        assert probe.calls == 1
        assert probe.stops >= 1

    def test_deactivation_clears_published_results(self, fast_config, fake_factory, fake_source):
        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            pipeline.activate(Capability.OBJECT)
            assert await wait_for(lambda: pipeline.latest(Capability.OBJECT) is not None)
            pipeline.deactivate(Capability.OBJECT)
            latest = pipeline.latest(Capability.OBJECT)
            await pipeline.close()
            return latest

        assert asyncio.run(scenario()) is None

    def test_swap_clears_results_and_restarts(self, fast_config, fake_factory, fake_source):
        probe = fake_factory.probes[Capability.BODY]

        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            pipeline.activate(Capability.BODY, "lite")
            assert await wait_for(lambda: pipeline.latest(Capability.BODY) is not None)
            pipeline.swap_variant(Capability.BODY, "full")
            cleared = pipeline.latest(Capability.BODY) is None
            resumed = await wait_for(lambda: pipeline.latest(Capability.BODY) is not None)
            detector = pipeline.registry.handle(Capability.BODY).detector
            await pipeline.close()
            return cleared, resumed, detector.variant

        cleared, resumed, variant = asyncio.run(scenario())
        assert cleared and resumed
        assert variant == "full"
        assert probe.max_in_flight == 1


class TestErrors:
    def test_inference_error_stops_only_that_capability(self, fast_config, fake_factory, fake_source):
        fake_factory.probes[Capability.HAND].fail_infer = True
        errors = []

        async def scenario():
            pipeline = PerceptionPipeline(
                fast_config, fake_factory, fake_source, on_error=lambda cap, err: errors.append((cap, err))
            )
            pipeline.activate(Capability.HAND)
            pipeline.activate(Capability.FACE)
            assert await wait_for(lambda: errors and pipeline.latest(Capability.FACE) is not None)
            face_count = pipeline.schedulers[Capability.FACE].inference_count
            await asyncio.sleep(0.05)
            result = (
                pipeline.schedulers[Capability.HAND].state,
                pipeline.latest(Capability.HAND),
                pipeline.schedulers[Capability.FACE].inference_count > face_count,
                pipeline.errors(),
            )
            await pipeline.close()
            return result

        hand_state, hand_latest, face_progressed, current = asyncio.run(scenario())
        assert [cap for cap, _ in errors] == [Capability.HAND]
        assert isinstance(errors[0][1], InferenceError)
        assert hand_state is SchedulerState.STOPPED
        assert hand_latest is None
        assert face_progressed
        assert set(current) == {"hand"}
        assert fake_factory.probes[Capability.HAND].calls == 1

    def test_decode_error_publishes_empty_and_continues(self, fast_config, fake_factory, fake_source):
        fake_factory.probes[Capability.FACE].fail_decode = True

        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            pipeline.activate(Capability.FACE)
            assert await wait_for(lambda: pipeline.schedulers[Capability.FACE].inference_count >= 3)
            result = pipeline.latest(Capability.FACE), pipeline.errors()
            await pipeline.close()
            return result

        latest, errors = asyncio.run(scenario())
        assert latest.results == ()
        assert errors == {}

    def test_load_failure_leaves_siblings_running(self, fast_config, fake_factory, fake_source):
        fake_factory.probes[Capability.OBJECT].fail_load = True

        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            pipeline.activate(Capability.OBJECT)
            pipeline.activate(Capability.HAND)
            assert await wait_for(lambda: pipeline.latest(Capability.HAND) is not None)
            await asyncio.sleep(0.05)
            result = pipeline.errors(), pipeline.schedulers[Capability.OBJECT].running
            await pipeline.close()
            return result

        errors, object_running = asyncio.run(scenario())
        assert isinstance(errors["object"], ModelLoadError)
        assert "hand" not in errors
        assert not object_running
        assert fake_factory.probes[Capability.OBJECT].calls == 0


class TestReadiness:
    def test_waits_for_frames(self, fast_config, fake_factory, fake_source):
        probe = fake_factory.probes[Capability.HAND]
        fake_source.ready = False

        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            pipeline.activate(Capability.HAND)
            await asyncio.sleep(0.1)
            blocked = probe.calls, pipeline.schedulers[Capability.HAND].state
            fake_source.ready = True
            resumed = await wait_for(lambda: probe.calls > 0)
            await pipeline.close()
            return blocked, resumed

        (calls, state), resumed = asyncio.run(scenario())
        assert calls == 0
        assert state is SchedulerState.POLLING
        assert resumed

    def test_same_frame_not_processed_twice(self, fast_config, fake_factory):
        from conftest import FakeSource

        source = FakeSource(advance=False)
        probe = fake_factory.probes[Capability.HAND]

        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, source)
            pipeline.activate(Capability.HAND)
            await asyncio.sleep(0.15)
            await pipeline.close()

        asyncio.run(scenario())
        assert probe.calls == 1

    def test_toggle_reports_state(self, fast_config, fake_factory, fake_source):
        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            states = [pipeline.toggle(Capability.FACE), pipeline.toggle(Capability.FACE)]
            await pipeline.close()
            return states

        assert asyncio.run(scenario()) == [True, False]


class TestRun:
    def test_run_paints_until_stopped(self, fast_config, fake_factory, fake_source):
        frames = []

        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source, on_frame=frames.append)
            task = asyncio.create_task(pipeline.run())
            pipeline_ok = await wait_for(lambda: len(frames) >= 2)
            pipeline.stop()
            await asyncio.wait_for(task, 1.0)
            return pipeline_ok

        assert asyncio.run(scenario())
        assert frames[0].image.shape == (48, 64, 3)


class TestUnloadedDetector:
    def test_infer_once_without_detector_stops_quietly(self, fast_config, fake_factory, fake_source):
        async def scenario():
            pipeline = PerceptionPipeline(fast_config, fake_factory, fake_source)
            scheduler = pipeline.schedulers[Capability.HAND]
            h = pipeline.registry.handle(Capability.HAND)
            ran = await scheduler._infer_once(h, fake_source.latest(), 0)
            result = ran, h.in_flight, pipeline.latest(Capability.HAND)
            await pipeline.close()
            return result

        ran, in_flight, latest = asyncio.run(scenario())
        assert ran is False
        assert in_flight is None
        assert latest is None
