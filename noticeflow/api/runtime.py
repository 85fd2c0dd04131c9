"""Process wiring: builds every pipeline component once and shares it."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from noticeflow.config.settings import NoticeflowConfig
from noticeflow.config.stores import TenantConfigRepository
from noticeflow.document.extractor import extract_document
from noticeflow.enrichment.children import ChildSplitter
from noticeflow.extraction.registry import TemplateRegistry
from noticeflow.fetch.fetcher import PageFetcher, PlaywrightFetcher
from noticeflow.fetch.orchestrator import ScrapeOrchestrator
from noticeflow.ledger.fingerprints import FingerprintLedger, JsonlFingerprintStore
from noticeflow.records.store import InMemoryRecordStore, RecordStore
from noticeflow.signals.emitter import SignalEmitter
from noticeflow.telemetry.errors import ErrorCode, emit_structured_error
from noticeflow.worker.handlers import EmailProcessor, FetchJobHandler
from noticeflow.worker.jobs import ParseEmailJob, ProcessingResult
from noticeflow.worker.lane import LaneRegistry

logger = logging.getLogger(__name__)


class PipelineRuntime:
    """All long-lived collaborators of one process.

    In-memory by default; ``from_config`` persists signals, fingerprints and
    tenant config under ``config.pipeline.data_dir``.
    """

    def __init__(
        self,
        config: NoticeflowConfig | None = None,
        *,
        fetcher: PageFetcher | None = None,
        records: RecordStore | None = None,
        ledger: FingerprintLedger | None = None,
        signals: SignalEmitter | None = None,
        tenant_config: TenantConfigRepository | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or NoticeflowConfig()
        self.records = records or InMemoryRecordStore()
        self.ledger = ledger or FingerprintLedger()
        self.signals = signals or SignalEmitter()
        self.tenant_config = tenant_config or TenantConfigRepository(defaults=self.config.default_scraping)
        self.templates = TemplateRegistry()
        self.fetcher = fetcher or PlaywrightFetcher(self.config.fetch)

        self.orchestrator = ScrapeOrchestrator(
            self.records, self.tenant_config, self.signals, self.fetcher, templates=self.templates, sleep=sleep
        )
        self.splitter = ChildSplitter(self.records, self.ledger, self.signals)
        self.fetch_handler = FetchJobHandler(
            self.records, self.orchestrator, self.splitter, self.tenant_config, self.templates, sleep=sleep
        )
        self.lanes = LaneRegistry(
            self.fetch_handler.handle_fetch_job, self.config.lane, records=self.records, signals=self.signals
        )
        self.email_processor = EmailProcessor(
            self.records,
            self.ledger,
            self.signals,
            self.templates,
            self.tenant_config,
            enqueue_fetch=self.lanes.enqueue,
        )

    @classmethod
    def from_config(cls, config: NoticeflowConfig) -> PipelineRuntime:
        data_dir = config.pipeline.data_dir
        return cls(
            config,
            ledger=FingerprintLedger(JsonlFingerprintStore(data_dir / "fingerprints.jsonl")),
            signals=SignalEmitter(ledger_path=data_dir / "signals.jsonl"),
            tenant_config=TenantConfigRepository(data_dir / "tenants", defaults=config.default_scraping),
        )

    async def handle_email(self, job: ParseEmailJob) -> ProcessingResult:
        return await self.email_processor.handle_email_job(job)

    async def reprocess(self, tenant_id: str, *, limit: int, only_failed: bool) -> dict[str, Any]:
        """Re-extract stored pages, then split parents that now list several items."""
        summary = await self.orchestrator.reprocess_from_raw_html(tenant_id, limit=limit, only_failed=only_failed)
        children_created = 0
        for entry in summary["results"]:
            if not entry["success"] or entry.get("total_line_items", 0) <= 1:
                continue
            record = await self.records.get(tenant_id, entry["id"])
            if record is None or not record.raw_html:
                continue
            try:
                children = await self.splitter.create_children(
                    tenant_id, record.id, extract_document(record.raw_html)
                )
                children_created += len(children)
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.CHILD_CREATION_FAILED,
                    message=str(exc),
                    suppressed=True,
                    tenant_id=tenant_id,
                    record_id=record.id,
                    details={"operation": "reprocess"},
                )
        summary["children_created"] = children_created
        return summary

    async def shutdown(self) -> None:
        await self.lanes.stop_all()
        stop = getattr(self.fetcher, "stop", None)
        if stop is not None:
            await stop()
