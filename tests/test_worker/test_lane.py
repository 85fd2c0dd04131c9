"""Tests for the per-tenant fetch lane: rate limit, drain and halt."""

import asyncio

import pytest

from noticeflow.config.settings import LaneConfig
from noticeflow.records.models import CanonicalOpportunity, ScrapingStatus
from noticeflow.signals.types import SignalType
from noticeflow.worker.jobs import FetchJob, HaltTenant
from noticeflow.worker.lane import FetchLane, LaneRegistry

TENANT = "tenant-a"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


async def make_jobs(records, count, first=0):
    jobs = []
    for i in range(first, first + count):
        record = await records.create(
            CanonicalOpportunity(tenant_id=TENANT, fingerprint=f"fp-{i}", source_url=f"https://neco.navy.mil/{i}")
        )
        jobs.append(FetchJob(tenant_id=TENANT, record_id=record.id, source_url=record.source_url))
    return jobs


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_starts_spaced_by_window(self, records):
        clock = FakeClock()
        started = []

        async def handler(job):
            started.append(clock.now)

        lane = FetchLane(
            TENANT, handler, LaneConfig(max_starts=1, window_ms=5000), clock=clock, sleep=clock.sleep
        )
        for job in await make_jobs(records, 3):
            await lane.enqueue(job)
        await lane.start()
        await lane.join()
        await lane.stop()

        assert started == [0.0, 5.0, 10.0]
        assert lane.processed == 3

    @pytest.mark.asyncio
    async def test_burst_allowance(self, records):
        clock = FakeClock()
        started = []

        async def handler(job):
            started.append(clock.now)

        lane = FetchLane(
            TENANT, handler, LaneConfig(max_starts=2, window_ms=1000), clock=clock, sleep=clock.sleep
        )
        for job in await make_jobs(records, 4):
            await lane.enqueue(job)
        await lane.start()
        await lane.join()
        await lane.stop()

        assert started == [0.0, 0.0, 1.0, 1.0]


class TestDrain:
    @pytest.mark.asyncio
    async def test_drain_discards_pending_jobs(self, records):
        handled = []

        async def handler(job):
            handled.append(job.id)

        lane = FetchLane(TENANT, handler, LaneConfig(max_starts=10, window_ms=1000), records=records)
        await lane.start()
        lane.pause()
        jobs = await make_jobs(records, 3)
        for job in jobs:
            await lane.enqueue(job)

        assert await lane.drain("operator") == 3
        assert lane.pending == 0
        for job in jobs:
            stored = await records.get(TENANT, job.record_id)
            assert stored.scraping_status == ScrapingStatus.CANCELLED
            assert stored.scraping_error == "operator"

        lane.resume()
        (extra,) = await make_jobs(records, 1, first=3)
        await lane.enqueue(extra)
        await lane.join()
        await lane.stop()
        assert handled == [extra.id]

    @pytest.mark.asyncio
    async def test_drain_spares_scraped_records(self, records):
        async def handler(job):
            return None

        lane = FetchLane(TENANT, handler, records=records)
        (job,) = await make_jobs(records, 1)
        await records.update(TENANT, job.record_id, {"scraping_status": ScrapingStatus.SUCCESS})
        await lane.enqueue(job)
        assert await lane.drain() == 1
        assert (await records.get(TENANT, job.record_id)).scraping_status == ScrapingStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_job_waiting_for_slot_is_discarded(self, records):
        clock = FakeClock()
        handled = []

        async def handler(job):
            handled.append(job.id)

        async def sleep_then_drain(seconds):
            clock.now += seconds
            await lane.drain("operator")

        lane = FetchLane(
            TENANT,
            handler,
            LaneConfig(max_starts=1, window_ms=5000),
            records=records,
            clock=clock,
            sleep=sleep_then_drain,
        )
        first, second = await make_jobs(records, 2)
        await lane.enqueue(first)
        await lane.enqueue(second)
        await lane.start()
        await lane.join()
        await lane.stop()

        assert handled == [first.id]
        assert (await records.get(TENANT, second.record_id)).scraping_status == ScrapingStatus.CANCELLED


class TestHalt:
    @pytest.mark.asyncio
    async def test_halt_drains_lane_and_signals(self, records, signals):
        handled = []

        async def handler(job):
            handled.append(job.id)
            return HaltTenant(TENANT, "Error page", job.record_id)

        lane = FetchLane(
            TENANT, handler, LaneConfig(max_starts=10, window_ms=1000), records=records, signals=signals
        )
        jobs = await make_jobs(records, 3)
        for job in jobs:
            await lane.enqueue(job)
        await lane.start()
        await lane.join()
        await lane.stop()

        assert handled == [jobs[0].id]
        halted = [s for s in signals.signals if s.signal_type == SignalType.TENANT_HALTED]
        assert len(halted) == 1
        assert halted[0].payload == {"reason": "Error page", "drained": 2}
        for job in jobs[1:]:
            assert (await records.get(TENANT, job.record_id)).scraping_status == ScrapingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_failing_job_does_not_stop_consumer(self, records):
        calls = []

        async def handler(job):
            calls.append(job.id)
            if len(calls) == 1:
                raise RuntimeError("boom")

        lane = FetchLane(TENANT, handler, LaneConfig(max_starts=10, window_ms=1000))
        for job in await make_jobs(records, 2):
            await lane.enqueue(job)
        await lane.start()
        await lane.join()
        await lane.stop()

        assert len(calls) == 2
        assert (lane.failed, lane.processed) == (1, 1)


class TestLaneRegistry:
    @pytest.mark.asyncio
    async def test_enqueue_starts_tenant_lane(self, records):
        handled = []

        async def handler(job):
            handled.append(job.tenant_id)

        registry = LaneRegistry(handler, LaneConfig(max_starts=10, window_ms=1000))
        (job,) = await make_jobs(records, 1)
        job_id = await registry.enqueue(job)

        lane = registry.get(TENANT)
        assert lane is registry.lane(TENANT)
        assert lane.running
        await lane.join()
        await registry.stop_all()

        assert job_id == job.id
        assert handled == [TENANT]
        assert registry.get("tenant-b") is None
