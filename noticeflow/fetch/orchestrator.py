"""Fetch Orchestrator: enriches one record from its live source page.

Each ``scrape`` call is a finite state machine run. The orchestrator does not
interpret pages itself; it resolves the domain policy, drives the fetcher,
classifies what came back, and hands successful pages to the structural
extractor.

Responsibilities:
- Resolve the domain policy before any network access
- Retry timeouts and generic failures with a fixed delay up to the tenant's
  attempt limit
- Classify error pages as terminal and flag the tenant for halting
- Persist the structured result, the raw page and the enrichment together
- Emit a signal at every phase boundary and on every terminal failure

MUST NOT:
- Let an exception escape ``scrape`` untranslated into a scraping status
- Retry an error page, a block, or a missing page
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from noticeflow.config.domain_policy import (
    DomainPolicy,
    ResolvedPolicy,
    extract_host,
    resolve_domain_policy,
)
from noticeflow.config.stores import TenantConfigRepository
from noticeflow.document.dom import body_text, parse_html
from noticeflow.document.extractor import extract_document
from noticeflow.document.models import StructuralDocument
from noticeflow.enrichment.enrichment import build_enrichment, cancel_record
from noticeflow.errors import NoticeflowError, PolicyViolation, TransportError, TransportErrorKind
from noticeflow.extraction.registry import TemplateRegistry
from noticeflow.extraction.template import ParsingTemplate
from noticeflow.fetch.error_page import is_error_page
from noticeflow.fetch.fetcher import FetchResponse, PageFetcher
from noticeflow.fetch.phases import TERMINAL_PHASES, VALID_TRANSITIONS, ScrapePhase
from noticeflow.records.models import FAILED_SCRAPING_STATUSES, CanonicalOpportunity, ScrapingStatus
from noticeflow.records.store import RecordStore
from noticeflow.signals.emitter import SignalEmitter
from noticeflow.signals.types import SignalType
from noticeflow.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

NECO_HOST_MARKER = "neco.navy.mil"
SCRAPING_CANCELLATION_SOURCE = "scraping_auto"
ERROR_PAGE_MESSAGE = "Site returned an error page - possible IP block or page unavailable"

# Flattened document keys copied to the top level of scraped data.
FLATTENED_KEYS = (
    "lineItem",
    "nomenclature",
    "quantity",
    "unit",
    "nsn",
    "materialControlCode",
    "vendorCode",
    "vendorPartNumber",
    "cageRefNo",
    "contractType",
    "purchaseCategory",
    "fsc",
    "issueDate",
    "closingDate",
    "closingTime",
    "leadTime",
    "leadTimeDays",
    "buyerName",
    "buyerEmail",
    "buyerPhone",
    "buyerFax",
    "adminCommunications",
    "subLineItems",
    "purchaseRequisitionNo",
    "dpasRating",
    "setAside",
    "solicitationNumber",
    "transPurpose",
    "tdpDrawings",
    "closingTimezone",
    "fobPoint",
    "shipmentPayment",
    "acceptancePoint",
    "buyerEntity",
    "buyerDodaac",
    "buyerCity",
    "buyerState",
    "buyerZip",
    "documentsUrl",
    "synopsisUrl",
)

GENERIC_TEXT_LIMIT = 1000


class ScrapeRunError(NoticeflowError):
    """Raised when a scrape run attempts an invalid phase transition."""


@dataclass
class ScrapeResult:
    success: bool
    status: ScrapingStatus
    data: dict[str, Any] | None = None
    is_cancellation: bool = False
    error: str | None = None
    halt_tenant: bool = False
    attempts: int = 0
    document: StructuralDocument | None = field(default=None, repr=False)
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ScrapeRun:
    """Mutable state of one ``scrape`` call."""

    tenant_id: str
    record_id: str
    phase: ScrapePhase = ScrapePhase.RESOLVE
    attempts: int = 0
    record: CanonicalOpportunity | None = None
    url: str = ""
    policy: DomainPolicy | None = None
    response: FetchResponse | None = None
    failure: TransportError | None = None


def classify_response(response: FetchResponse) -> TransportError | None:
    """Map a received response to a transport failure, or ``None`` for a usable page."""
    status = response.status_code
    if 200 <= status < 300:
        if is_error_page(response.html):
            return TransportError(TransportErrorKind.ERROR_PAGE, ERROR_PAGE_MESSAGE, status)
        return None
    if status in (401, 403):
        return TransportError(TransportErrorKind.BLOCKED, f"Request failed with status code {status}", status)
    if status == 404:
        return TransportError(TransportErrorKind.NOT_FOUND, "Page not found (404)", status)
    return TransportError(TransportErrorKind.GENERIC, f"Request failed with status code {status}", status)


_TERMINAL_STATUS = {
    TransportErrorKind.TIMEOUT: ScrapingStatus.TIMEOUT,
    TransportErrorKind.ERROR_PAGE: ScrapingStatus.ERROR_PAGE,
    TransportErrorKind.BLOCKED: ScrapingStatus.BLOCKED,
    TransportErrorKind.NOT_FOUND: ScrapingStatus.FAILED,
    TransportErrorKind.GENERIC: ScrapingStatus.FAILED,
}


def extract_data(html: str, url: str) -> tuple[dict[str, Any], StructuralDocument | None]:
    """Scraped data for a page; NECO pages also yield their structural document."""
    soup = parse_html(html)
    data: dict[str, Any] = {
        "title": soup.title.get_text().strip() if soup.title else "",
        "url": url,
        "scrapedAt": datetime.now(timezone.utc).isoformat(),
    }

    if NECO_HOST_MARKER not in extract_host(url):
        description = soup.find("meta", attrs={"name": "description"})
        keywords = soup.find("meta", attrs={"name": "keywords"})
        data["meta"] = {
            "description": description.get("content") if description else None,
            "keywords": keywords.get("content") if keywords else None,
        }
        data["text"] = body_text(soup).strip()[:GENERIC_TEXT_LIMIT]
        return data, None

    document = extract_document(html)
    scraped = document.to_scraped_dict()
    data["neco"] = scraped
    for key in FLATTENED_KEYS:
        value = scraped.get(key)
        if key == "quantity" and value is not None:
            data[key] = value
        elif value:
            data[key] = value
    if document.line_items:
        data["lineItems"] = scraped["lineItems"]
    if document.cdrl_items:
        data["cdrlItems"] = scraped["cdrlItems"]
    data["isCancellation"] = document.is_cancellation
    data["totalLineItems"] = document.total_line_items
    data["totalSubLineItems"] = document.total_sub_line_items
    return data, document


class ScrapeOrchestrator:
    """Drives scrape runs against a record store, tenant config and fetcher."""

    def __init__(
        self,
        records: RecordStore,
        tenant_config: TenantConfigRepository,
        signals: SignalEmitter,
        fetcher: PageFetcher,
        *,
        templates: TemplateRegistry | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._records = records
        self._tenant_config = tenant_config
        self._signals = signals
        self._fetcher = fetcher
        self._templates = templates or TemplateRegistry()
        self._sleep = sleep

    # --- Phase Transition ---

    async def _transition(self, run: ScrapeRun, to_phase: ScrapePhase, context: dict[str, Any] | None = None) -> None:
        """Every phase change of a run goes through here."""
        if to_phase not in VALID_TRANSITIONS.get(run.phase, set()):
            raise ScrapeRunError(f"Invalid transition: {run.phase.value} -> {to_phase.value}")

        from_phase = run.phase
        run.phase = to_phase
        await self._signals.emit(
            SignalType.PHASE_TRANSITION,
            run.tenant_id,
            record_id=run.record_id,
            payload={"from": from_phase.value, "to": to_phase.value, **(context or {})},
        )

    # --- Entry points ---

    async def scrape_auto(self, tenant_id: str, record_id: str, template: ParsingTemplate | None) -> ScrapeResult:
        """Scrape only when the record's template has scraping switched on."""
        if template is None or not template.scraping.enabled:
            logger.debug("Scraping not enabled for template %s", template.id if template else None)
            return ScrapeResult(
                success=False,
                status=ScrapingStatus.DISABLED,
                error="Scraping not enabled for this template",
            )
        return await self.scrape(tenant_id, record_id, template)

    async def scrape(self, tenant_id: str, record_id: str, template: ParsingTemplate | None = None) -> ScrapeResult:
        run = ScrapeRun(tenant_id=tenant_id, record_id=record_id)
        try:
            result = await self._phase_resolve(run, template)
            while result is None and run.phase not in TERMINAL_PHASES:
                if run.phase == ScrapePhase.FETCH:
                    await self._phase_fetch(run)
                elif run.phase == ScrapePhase.CLASSIFY:
                    result = await self._phase_classify(run)
                elif run.phase == ScrapePhase.EXTRACT:
                    result = await self._phase_extract_and_persist(run)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.SCRAPE_FAILED,
                message=str(exc),
                suppressed=True,
                tenant_id=tenant_id,
                record_id=record_id,
                details={"phase": run.phase.value, "attempts": run.attempts},
            )
            result = await self._fail(run, ScrapingStatus.FAILED, f"Unexpected error: {exc}", notify=run.record is not None)
        return result

    # --- Phase Implementations ---

    async def _phase_resolve(self, run: ScrapeRun, template: ParsingTemplate | None) -> ScrapeResult | None:
        """RESOLVE: load the record and decide whether its URL may be fetched."""
        run.record = await self._records.get(run.tenant_id, run.record_id)
        if run.record is None:
            return await self._fail(run, ScrapingStatus.FAILED, "Record not found", persist=False, notify=False)
        if not run.record.source_url:
            return await self._fail(run, ScrapingStatus.FAILED, "No source URL available", persist=False, notify=False)

        run.url = run.record.source_url
        template = template or self._templates.get(run.tenant_id, run.record.template_id)
        settings = self._tenant_config.get_settings(run.tenant_id)
        resolved = resolve_domain_policy(
            extract_host(run.url),
            template_domains=template.scraping.template_domains if template else None,
            tenant_policies=self._tenant_config.domain_map(run.tenant_id),
            default_timeout_ms=settings.global_timeout_ms,
        )

        try:
            self._enforce_policy(resolved)
        except PolicyViolation as exc:
            logger.warning("Scraping refused for domain %s: %s", exc.domain, exc.reason)
            if exc.requires_auth:
                await self._set_status(
                    run, ScrapingStatus.REQUIRES_AUTH, "Domain requires authentication but no credentials configured"
                )
                return await self._fail(
                    run, ScrapingStatus.REQUIRES_AUTH, "Authentication required but not configured", persist=False, notify=False
                )
            await self._set_status(run, ScrapingStatus.BLOCKED, resolved.policy.reason or "Domain blocked")
            return await self._fail(
                run,
                ScrapingStatus.BLOCKED,
                resolved.policy.reason or "Scraping disabled for this domain",
                persist=False,
                notify=False,
            )

        run.policy = resolved.policy
        await self._transition(run, ScrapePhase.FETCH, {"url": run.url, "tier": resolved.tier})
        return None

    @staticmethod
    def _enforce_policy(resolved: ResolvedPolicy) -> None:
        policy = resolved.policy
        if not policy.enabled:
            raise PolicyViolation(policy.domain, policy.reason or "Domain blocked")
        if policy.requires_auth and not policy.credentials:
            raise PolicyViolation(policy.domain, "Authentication required but not configured", requires_auth=True)

    async def _phase_fetch(self, run: ScrapeRun) -> None:
        """FETCH: one GET; transport errors are carried to classification."""
        settings = self._tenant_config.get_settings(run.tenant_id)
        run.attempts += 1
        run.response = None
        run.failure = None
        logger.info("Scraping %s (attempt %d/%d)", run.url, run.attempts, settings.max_retries)

        if run.attempts == 1:
            await self._set_status(run, ScrapingStatus.PENDING, None)

        timeout_ms = (run.policy.timeout_ms if run.policy else None) or settings.global_timeout_ms
        headers = run.policy.custom_headers if run.policy else {}
        try:
            run.response = await self._fetcher.fetch(run.url, timeout_ms=timeout_ms, headers=headers)
        except TransportError as exc:
            run.failure = exc
        await self._transition(run, ScrapePhase.CLASSIFY, {"attempt": run.attempts})

    async def _phase_classify(self, run: ScrapeRun) -> ScrapeResult | None:
        """CLASSIFY: accept the page, schedule a retry, or fail terminally."""
        failure = run.failure
        if failure is None and run.response is not None:
            failure = classify_response(run.response)
        if failure is None:
            await self._transition(run, ScrapePhase.EXTRACT)
            return None

        settings = self._tenant_config.get_settings(run.tenant_id)
        if failure.retryable and run.attempts < settings.max_retries:
            logger.warning("%s on %s, retrying in %dms", failure.kind.value, run.url, settings.retry_delay_ms)
            await self._signals.emit(
                SignalType.RETRY_ATTEMPT,
                run.tenant_id,
                record_id=run.record_id,
                payload={
                    "attempt_number": run.attempts,
                    "max_attempts": settings.max_retries,
                    "reason": str(failure),
                },
            )
            await self._sleep(settings.retry_delay_ms / 1000.0)
            await self._transition(run, ScrapePhase.FETCH, {"retry": True})
            return None

        if failure.kind == TransportErrorKind.ERROR_PAGE:
            logger.warning("Error page detected for %s - not retrying", run.url)
        return await self._fail(
            run,
            _TERMINAL_STATUS[failure.kind],
            str(failure),
            halt_tenant=failure.kind == TransportErrorKind.ERROR_PAGE,
        )

    async def _phase_extract_and_persist(self, run: ScrapeRun) -> ScrapeResult:
        """EXTRACT then PERSIST: structural parse, enrichment, one record update."""
        html = run.response.html if run.response else ""
        data, document = extract_data(html, run.url)
        is_cancellation = data.get("isCancellation") is True
        await self._transition(run, ScrapePhase.PERSIST)

        scraped_at = datetime.now(timezone.utc)
        changes: dict[str, Any] = {
            "scraped_data": data,
            "raw_html": html,
            "scraped_at": scraped_at,
            "scraping_status": ScrapingStatus.SUCCESS,
            "scraping_error": None,
        }
        if document is not None:
            current = await self._records.get(run.tenant_id, run.record_id)
            changes.update(build_enrichment(document, current.description if current else None))

        try:
            await self._records.update(run.tenant_id, run.record_id, changes)
        except KeyError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.SCRAPE_PERSIST_FAILED,
                message=f"Record vanished before persisting: {exc}",
                suppressed=True,
                tenant_id=run.tenant_id,
                record_id=run.record_id,
            )
            return await self._fail(run, ScrapingStatus.FAILED, "Record not found", persist=False, notify=False)

        if is_cancellation:
            await self.handle_cancellation(run.tenant_id, run.record_id)

        await self._transition(run, ScrapePhase.COMPLETE)
        await self._signals.emit(
            SignalType.SCRAPE_COMPLETE,
            run.tenant_id,
            record_id=run.record_id,
            status=ScrapingStatus.SUCCESS.value,
            payload={"url": run.url, "attempts": run.attempts, "is_cancellation": is_cancellation},
        )
        logger.info("Successfully scraped %s%s", run.url, " [CANCELLATION DETECTED]" if is_cancellation else "")
        return ScrapeResult(
            success=True,
            status=ScrapingStatus.SUCCESS,
            data=data,
            is_cancellation=is_cancellation,
            attempts=run.attempts,
            document=document,
            scraped_at=scraped_at,
        )

    # --- Terminal handling ---

    async def _fail(
        self,
        run: ScrapeRun,
        status: ScrapingStatus,
        error: str,
        *,
        halt_tenant: bool = False,
        persist: bool = True,
        notify: bool = True,
    ) -> ScrapeResult:
        if run.phase not in TERMINAL_PHASES:
            await self._transition(run, ScrapePhase.FAIL, {"status": status.value, "error": error})
        if persist:
            await self._set_status(run, status, error)
        if notify:
            solicitation = run.record.solicitation_number if run.record else None
            await self._signals.emit_scraping_error(
                run.tenant_id, run.record_id, status.value, error, run.url, solicitation
            )
        return ScrapeResult(
            success=False,
            status=status,
            error=error,
            halt_tenant=halt_tenant,
            attempts=run.attempts,
        )

    async def _set_status(self, run: ScrapeRun, status: ScrapingStatus, error: str | None) -> None:
        try:
            await self._records.update(run.tenant_id, run.record_id, {"scraping_status": status, "scraping_error": error})
        except KeyError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.SCRAPE_PERSIST_FAILED,
                message=f"Could not record scraping status {status.value}: {exc}",
                suppressed=True,
                tenant_id=run.tenant_id,
                record_id=run.record_id,
            )

    async def handle_cancellation(self, tenant_id: str, record_id: str) -> CanonicalOpportunity | None:
        return await cancel_record(
            self._records,
            self._signals,
            tenant_id,
            record_id,
            source=SCRAPING_CANCELLATION_SOURCE,
            reason="Cancellation detected on the scraped notice page",
        )

    # --- Maintenance ---

    async def reprocess_from_raw_html(
        self, tenant_id: str, *, limit: int = 5000, only_failed: bool = False
    ) -> dict[str, Any]:
        """Re-run extraction over stored pages without touching the network."""
        candidates = [
            record
            for record in await self._records.list_records(tenant_id)
            if not record.is_child and record.raw_html and record.source_url
            if not only_failed or record.scraping_status in FAILED_SCRAPING_STATUSES
        ]
        candidates.sort(key=lambda record: record.created_at, reverse=True)

        summary: dict[str, Any] = {"processed": 0, "enriched": 0, "errors": 0, "results": []}
        for record in candidates[:limit]:
            summary["processed"] += 1
            try:
                data, document = extract_data(record.raw_html or "", record.source_url or "")
                changes: dict[str, Any] = {
                    "scraped_data": data,
                    "scraping_status": ScrapingStatus.SUCCESS,
                    "scraping_error": None,
                }
                if document is not None:
                    changes.update(build_enrichment(document, record.description))
                await self._records.update(tenant_id, record.id, changes)
                if data.get("isCancellation") is True:
                    await self.handle_cancellation(tenant_id, record.id)
                summary["enriched"] += 1
                summary["results"].append(
                    {"id": record.id, "total_line_items": data.get("totalLineItems", 0), "success": True}
                )
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.SCRAPE_FAILED,
                    message=str(exc),
                    suppressed=True,
                    tenant_id=tenant_id,
                    record_id=record.id,
                    details={"operation": "reprocess"},
                )
                summary["errors"] += 1
                summary["results"].append({"id": record.id, "success": False, "error": str(exc)})

        logger.info(
            "Reprocessed %d record(s) for tenant %s: %d enriched, %d errors",
            summary["processed"],
            tenant_id,
            summary["enriched"],
            summary["errors"],
        )
        return summary

    async def get_statistics(self, tenant_id: str) -> dict[str, Any]:
        by_status = await self._records.count_by_scraping_status(tenant_id)
        return {"total": sum(by_status.values()), "by_status": by_status}
