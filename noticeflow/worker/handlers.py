"""Queue job handlers: parse-email and fetch-page.

Both handlers are idempotent under re-delivery. A re-delivered email
updates the records it created the first time; a re-delivered fetch
re-scrapes, and child-splitting refuses to split a parent twice.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

from noticeflow.config.stores import TenantConfigRepository
from noticeflow.enrichment.children import ChildSplitter
from noticeflow.enrichment.enrichment import (
    canonical_values,
    cancel_record,
    map_extracted_fields,
    merge_email_update,
)
from noticeflow.errors import DuplicateFingerprint
from noticeflow.extraction.engine import ExtractedItem, extract
from noticeflow.extraction.registry import TemplateRegistry
from noticeflow.extraction.template import ParsingTemplate
from noticeflow.fetch.orchestrator import ScrapeOrchestrator
from noticeflow.ledger.fingerprints import FingerprintLedger
from noticeflow.records.models import CanonicalOpportunity, OpportunityStatus, ScrapingStatus
from noticeflow.records.store import RecordStore
from noticeflow.signals.emitter import SignalEmitter
from noticeflow.telemetry.errors import ErrorCode, emit_structured_error
from noticeflow.worker.jobs import (
    FetchJob,
    FetchJobResult,
    HaltTenant,
    JobOutcome,
    ParseEmailJob,
    ProcessingResult,
)

logger = logging.getLogger(__name__)

EMAIL_CANCELLATION_SOURCE = "email_auto"

EnqueueFetch = Callable[[FetchJob], Awaitable[str]]


class FetchJobHandler:
    """Runs one fetch job: guards, scrape, child-splitting, politeness delay."""

    def __init__(
        self,
        records: RecordStore,
        orchestrator: ScrapeOrchestrator,
        splitter: ChildSplitter,
        tenant_config: TenantConfigRepository,
        templates: TemplateRegistry,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._records = records
        self._orchestrator = orchestrator
        self._splitter = splitter
        self._tenant_config = tenant_config
        self._templates = templates
        self._sleep = sleep

    async def handle_fetch_job(self, job: FetchJob) -> FetchJobResult | HaltTenant:
        logger.info("Processing fetch job for record %s, URL: %s", job.record_id, job.source_url)

        record = await self._records.get(job.tenant_id, job.record_id)
        if record is None or record.is_deleted or record.status == OpportunityStatus.CANCELLED:
            logger.info("Skipping fetch for %s: cancelled or deleted", job.record_id)
            return FetchJobResult(job.id, JobOutcome.SKIPPED, detail="Record cancelled or deleted")

        if record.is_expired():
            logger.info("Skipping fetch for %s: closing date expired (%s)", job.record_id, record.closing_date)
            await self._records.update(
                job.tenant_id,
                job.record_id,
                {"scraping_status": ScrapingStatus.EXPIRED, "scraping_error": "Closing date expired"},
            )
            return FetchJobResult(job.id, JobOutcome.SKIPPED, detail="Closing date expired")

        template = self._templates.get(job.tenant_id, job.template_id or record.template_id)
        result = await self._orchestrator.scrape_auto(job.tenant_id, job.record_id, template)
        logger.info("Fetch job for record %s: status=%s, success=%s", job.record_id, result.status.value, result.success)

        children_created = 0
        if result.success and result.document is not None and result.document.total_line_items > 1:
            try:
                children = await self._splitter.create_children(job.tenant_id, job.record_id, result.document)
                children_created = len(children)
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.CHILD_CREATION_FAILED,
                    message=str(exc),
                    suppressed=True,
                    tenant_id=job.tenant_id,
                    record_id=job.record_id,
                )

        if result.halt_tenant:
            return HaltTenant(job.tenant_id, result.error or "Error page", job.record_id)

        if result.attempts:
            settings = self._tenant_config.get_settings(job.tenant_id)
            delay_ms = random.uniform(settings.min_delay_ms, settings.max_delay_ms)
            await self._sleep(delay_ms / 1000.0)

        return FetchJobResult(job.id, JobOutcome.COMPLETED, scrape=result, children_created=children_created)


class EmailProcessor:
    """Turns one email into created, updated or cancelled records.

    Contract:
    - Items whose extracted fields are all empty are ignored
    - An item already imported from the same message updates that record
    - A new item is created only when its fingerprint is unknown, and the
      fingerprint is claimed in the ledger before the record exists; the
      claim is released again when the record cannot be created
    - A NECO cancellation notice cancels the open record for its
      solicitation instead of creating one
    """

    def __init__(
        self,
        records: RecordStore,
        ledger: FingerprintLedger,
        signals: SignalEmitter,
        templates: TemplateRegistry,
        tenant_config: TenantConfigRepository,
        enqueue_fetch: EnqueueFetch | None = None,
    ) -> None:
        self._records = records
        self._ledger = ledger
        self._signals = signals
        self._templates = templates
        self._tenant_config = tenant_config
        self._enqueue_fetch = enqueue_fetch

    async def handle_email_job(self, job: ParseEmailJob) -> ProcessingResult:
        logger.info("Processing email %s for tenant %s", job.email_message_id, job.tenant_id)

        if job.template_id is None:
            template = self._templates.match(job.tenant_id, job.sender, job.subject)
        else:
            template = self._templates.get(job.tenant_id, job.template_id)
        if template is None:
            logger.error("No template %s for email %s", job.template_id or "matches", job.email_message_id)
            return ProcessingResult(success=False, errors=1)

        settings = self._tenant_config.get_settings(job.tenant_id)
        scraping_enabled = template.scraping.enabled or settings.auto_scrape_on_sync

        items = extract(job.body, template.extraction, template.output)
        logger.info("Parsed %d item(s) from email %s", len(items), job.email_message_id)

        result = ProcessingResult()
        for item in items:
            if item.is_empty():
                logger.debug("Skipping blank item from email %s", job.email_message_id)
                continue
            try:
                await self._process_item(job, template, item, scraping_enabled, result)
            except Exception as exc:
                result.errors += 1
                emit_structured_error(
                    logger,
                    code=ErrorCode.EMAIL_ITEM_FAILED,
                    message=str(exc),
                    suppressed=True,
                    tenant_id=job.tenant_id,
                    details={"email_message_id": job.email_message_id, "fingerprint": item.fingerprint},
                )

        logger.info(
            "Email %s: %d created, %d updated, %d duplicates, %d errors, %d cancellations, %d fetch jobs",
            job.email_message_id,
            result.created,
            result.updated,
            result.duplicates,
            result.errors,
            result.cancellations_detected,
            len(result.fetch_job_ids),
        )
        return result

    async def _process_item(
        self,
        job: ParseEmailJob,
        template: ParsingTemplate,
        item: ExtractedItem,
        scraping_enabled: bool,
        result: ProcessingResult,
    ) -> None:
        mapped = map_extracted_fields(item.data, template.output.field_mapping)
        page_url = item.data.get(template.scraping.url_field)
        if page_url:
            mapped["source_url"] = page_url
        solicitation = mapped.get("solicitation_number")

        if solicitation and self._is_cancellation_notice(mapped):
            await self._handle_cancellation(job, str(solicitation))
            result.cancellations_detected += 1
            try:
                await self._ledger.record(job.tenant_id, None, item.fingerprint)
            except DuplicateFingerprint:
                logger.debug("Cancellation notice for %s already recorded", solicitation)
            return

        existing = await self._records.find_by_message(job.tenant_id, job.email_message_id, solicitation)
        if existing is not None:
            changes = merge_email_update(existing, mapped)
            changes["extracted_data"] = dict(item.data)
            await self._records.update(job.tenant_id, existing.id, changes)
            result.updated += 1
            result.record_ids.append(existing.id)
            logger.debug("Updated record %s from email %s", existing.id, job.email_message_id)
            return

        if (await self._ledger.check(job.tenant_id, item.fingerprint)).exists:
            result.duplicates += 1
            logger.debug("Duplicate fingerprint: %s...", item.fingerprint[:16])
            return

        record = CanonicalOpportunity(
            tenant_id=job.tenant_id,
            template_id=template.id,
            email_account_id=job.email_account_id,
            email_message_id=job.email_message_id,
            email_thread_id=job.email_thread_id,
            email_date=job.email_date,
            fingerprint=item.fingerprint,
            extracted_data=dict(item.data),
            **canonical_values(mapped),
        )
        try:
            await self._ledger.record(job.tenant_id, record.id, item.fingerprint)
        except DuplicateFingerprint:
            result.duplicates += 1
            logger.debug("Fingerprint claimed concurrently: %s...", item.fingerprint[:16])
            return
        try:
            record = await self._records.create(record)
        except DuplicateFingerprint:
            await self._ledger.release(job.tenant_id, record.id)
            result.duplicates += 1
            logger.debug("Record for fingerprint created concurrently: %s...", item.fingerprint[:16])
            return
        except Exception:
            await self._ledger.release(job.tenant_id, record.id)
            raise

        result.created += 1
        result.record_ids.append(record.id)

        if scraping_enabled and record.source_url and not record.is_expired() and self._enqueue_fetch:
            job_id = await self._enqueue_fetch(
                FetchJob(
                    tenant_id=job.tenant_id,
                    record_id=record.id,
                    template_id=template.id,
                    source_url=record.source_url,
                )
            )
            result.fetch_job_ids.append(job_id)
            logger.info("Fetch job %s enqueued for record %s", job_id, record.id)

    @staticmethod
    def _is_cancellation_notice(mapped: dict[str, Any]) -> bool:
        trans_purpose = str(mapped.get("trans_purpose") or "").strip().lower()
        quote_type = str(mapped.get("quote_type") or "").strip().lower()
        return "cancellation" in trans_purpose and "amendment" in quote_type

    async def _handle_cancellation(self, job: ParseEmailJob, solicitation: str) -> None:
        logger.warning("CANCELLATION detected for %s in email %s", solicitation, job.email_message_id)
        existing = await self._records.find_open_by_solicitation(job.tenant_id, solicitation)
        if existing is None:
            logger.info(
                "Cancellation for %s - no open record found (already cancelled or not yet imported)", solicitation
            )
            return
        await cancel_record(
            self._records,
            self._signals,
            job.tenant_id,
            existing.id,
            source=EMAIL_CANCELLATION_SOURCE,
            reason=f"Cancellation detected in NECO email ({job.email_message_id})",
        )
