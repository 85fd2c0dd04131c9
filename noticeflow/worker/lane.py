"""Per-tenant fetch lane: one consumer, rate-limited fetch starts.

Contract:
- At most one fetch job of a tenant runs at a time
- At most ``max_starts`` jobs start within any ``window_ms`` window
- ``drain()`` discards every job that has not started yet and returns at
  once; the in-flight job runs to completion
- A handler returning ``HaltTenant`` drains the lane it ran on

MUST NOT:
- Let a failing job stop the consumer
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable

from noticeflow.config.settings import LaneConfig
from noticeflow.records.models import ScrapingStatus
from noticeflow.records.store import RecordStore
from noticeflow.signals.emitter import SignalEmitter
from noticeflow.signals.types import SignalType
from noticeflow.telemetry.errors import ErrorCode, emit_structured_error
from noticeflow.worker.jobs import FetchJob, HaltTenant

logger = logging.getLogger(__name__)

FetchHandler = Callable[[FetchJob], Awaitable[Any]]


class FetchLane:
    def __init__(
        self,
        tenant_id: str,
        handler: FetchHandler,
        config: LaneConfig | None = None,
        *,
        records: RecordStore | None = None,
        signals: SignalEmitter | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._tenant_id = tenant_id
        self._handler = handler
        self._config = config or LaneConfig()
        self._records = records
        self._signals = signals
        self._clock = clock
        self._sleep = sleep

        self._queue: asyncio.Queue[FetchJob] = asyncio.Queue()
        self._starts: deque[float] = deque()
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._current: FetchJob | None = None
        self.processed = 0
        self.failed = 0

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def current(self) -> FetchJob | None:
        return self._current

    # --- Lifecycle ---

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._consume())
        logger.info("Fetch lane started for tenant %s", self._tenant_id)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Fetch lane stopped for tenant %s", self._tenant_id)

    async def enqueue(self, job: FetchJob) -> str:
        await self._queue.put(job)
        return job.id

    async def join(self) -> None:
        """Wait until every enqueued job was either run or discarded."""
        await self._queue.join()

    def pause(self) -> None:
        self._resumed.clear()
        logger.info("Fetch lane paused for tenant %s (%d pending)", self._tenant_id, self.pending)

    def resume(self) -> None:
        self._resumed.set()
        logger.info("Fetch lane resumed for tenant %s", self._tenant_id)

    async def drain(self, reason: str = "Lane drained") -> int:
        """Discard all not-yet-started jobs and mark their records cancelled."""
        self._generation += 1
        discarded: list[FetchJob] = []
        while True:
            try:
                discarded.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()

        await self._mark_cancelled(discarded, reason)
        logger.warning("Fetch lane for tenant %s drained: %d job(s) removed (%s)", self._tenant_id, len(discarded), reason)
        return len(discarded)

    # --- Consumer ---

    async def _wait_for_slot(self) -> None:
        window_s = self._config.window_ms / 1000.0
        while True:
            now = self._clock()
            while self._starts and now - self._starts[0] >= window_s:
                self._starts.popleft()
            if len(self._starts) < self._config.max_starts:
                return
            await self._sleep(window_s - (now - self._starts[0]))

    async def _consume(self) -> None:
        while True:
            await self._resumed.wait()
            job = await self._queue.get()
            generation = self._generation
            try:
                await self._wait_for_slot()
                await self._resumed.wait()
                if generation != self._generation:
                    # Drained while this job was waiting for its slot.
                    await self._mark_cancelled([job], "Lane drained")
                    continue
                self._starts.append(self._clock())
                await self._run(job)
            finally:
                self._queue.task_done()

    async def _run(self, job: FetchJob) -> None:
        self._current = job
        try:
            result = await self._handler(job)
        except Exception as exc:
            self.failed += 1
            emit_structured_error(
                logger,
                code=ErrorCode.LANE_JOB_FAILED,
                message=str(exc),
                suppressed=True,
                tenant_id=job.tenant_id,
                record_id=job.record_id,
                details={"job_id": job.id},
            )
            return
        finally:
            self._current = None

        self.processed += 1
        if isinstance(result, HaltTenant):
            await self._halt(result)

    async def _halt(self, halt: HaltTenant) -> None:
        drained = await self.drain(f"Tenant halted: {halt.reason}")
        logger.warning("CIRCUIT BREAKER: tenant %s halted, %d job(s) removed", self._tenant_id, drained)
        if self._signals is not None:
            await self._signals.emit(
                SignalType.TENANT_HALTED,
                self._tenant_id,
                record_id=halt.record_id,
                label="Fetching halted",
                status=ScrapingStatus.ERROR_PAGE.value,
                payload={"reason": halt.reason, "drained": drained},
            )

    async def _mark_cancelled(self, jobs: list[FetchJob], reason: str) -> None:
        if self._records is None:
            return
        for job in jobs:
            record = await self._records.get(job.tenant_id, job.record_id)
            if record is None or record.scraping_status == ScrapingStatus.SUCCESS:
                continue
            await self._records.update(
                job.tenant_id,
                job.record_id,
                {"scraping_status": ScrapingStatus.CANCELLED, "scraping_error": reason},
            )


class LaneRegistry:
    """One ``FetchLane`` per tenant, created and started on first use."""

    def __init__(
        self,
        handler: FetchHandler,
        config: LaneConfig | None = None,
        *,
        records: RecordStore | None = None,
        signals: SignalEmitter | None = None,
    ) -> None:
        self._handler = handler
        self._config = config or LaneConfig()
        self._records = records
        self._signals = signals
        self._lanes: dict[str, FetchLane] = {}

    def lane(self, tenant_id: str) -> FetchLane:
        if tenant_id not in self._lanes:
            self._lanes[tenant_id] = FetchLane(
                tenant_id, self._handler, self._config, records=self._records, signals=self._signals
            )
        return self._lanes[tenant_id]

    def get(self, tenant_id: str) -> FetchLane | None:
        return self._lanes.get(tenant_id)

    async def enqueue(self, job: FetchJob) -> str:
        lane = self.lane(job.tenant_id)
        await lane.start()
        return await lane.enqueue(job)

    async def stop_all(self) -> None:
        for lane in self._lanes.values():
            await lane.stop()
