"""Tests for the parse-email and fetch-page job handlers."""

from datetime import datetime, timezone

import pytest

from noticeflow.enrichment.children import ChildSplitter
from noticeflow.extraction.registry import TemplateRegistry
from noticeflow.extraction.template import NECO_TEMPLATE, FieldRule, Transform
from noticeflow.fetch.orchestrator import ScrapeOrchestrator
from noticeflow.records.models import CanonicalOpportunity, OpportunityStatus, ScrapingStatus
from noticeflow.records.store import InMemoryRecordStore
from noticeflow.signals.types import SignalType
from noticeflow.worker.handlers import EmailProcessor, FetchJobHandler
from noticeflow.worker.jobs import FetchJob, HaltTenant, JobOutcome, ParseEmailJob

TENANT = "tenant-a"

EMAIL_BODY = (
    "NECO SOLICITATION NUMBER: N0010425QA001\r\n"
    "CLOSING DATE: March 16, 2099\r\n"
    "HYPERLINK: https://neco.navy.mil/synopsis/detail.aspx?id=1\r\n"
    "Nomenclature: VALVE ASSEMBLY\r\n"
    "\r\n"
    "NECO SOLICITATION NUMBER: N0010425QA002\r\n"
    "CLOSING DATE: March 17, 2099\r\n"
    "HYPERLINK: https://neco.navy.mil/synopsis/detail.aspx?id=2\r\n"
)

CANCELLATION_BODY = (
    "NECO SOLICITATION NUMBER: N0010425QA001\r\n"
    "TRANSACTION PURPOSE: Cancellation\r\n"
    "QUOTE TYPE: Amendment\r\n"
)


class FlakyRecordStore(InMemoryRecordStore):
    """Raises on the first ``failures`` creates."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def create(self, record):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("record store unavailable")
        return await super().create(record)


def email_job(body=EMAIL_BODY, message_id="msg-1", template_id="tpl_neco"):
    return ParseEmailJob(
        tenant_id=TENANT,
        template_id=template_id,
        email_message_id=message_id,
        email_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
        sender="noreply@neco.navy.mil",
        body=body,
    )


@pytest.fixture
def templates(neco_template):
    registry = TemplateRegistry()
    registry.register(neco_template)
    return registry


@pytest.fixture
def enqueued():
    return []


@pytest.fixture
def processor(records, ledger, signals, templates, tenant_config, enqueued):
    async def enqueue(job):
        enqueued.append(job)
        return job.id

    return EmailProcessor(records, ledger, signals, templates, tenant_config, enqueue)


class TestEmailProcessor:
    @pytest.mark.asyncio
    async def test_creates_records_and_fetch_jobs(self, processor, records, enqueued):
        result = await processor.handle_email_job(email_job())

        assert result.success
        assert (result.created, result.updated, result.duplicates) == (2, 0, 0)
        assert result.fetch_job_ids == [job.id for job in enqueued]
        first = await records.get(TENANT, result.record_ids[0])
        assert first.solicitation_number == "N0010425QA001"
        assert first.site == "NECO"
        assert first.description == "VALVE ASSEMBLY"
        assert first.template_id == "tpl_neco"
        assert enqueued[0].record_id == first.id
        assert enqueued[0].source_url == "https://neco.navy.mil/synopsis/detail.aspx?id=1"

    @pytest.mark.asyncio
    async def test_redelivery_updates_existing_records(self, processor, records, enqueued):
        first = await processor.handle_email_job(email_job())
        again = await processor.handle_email_job(email_job())

        assert (again.created, again.updated) == (0, 2)
        assert again.record_ids == first.record_ids
        assert len(enqueued) == 2
        assert len(await records.list_records(TENANT)) == 2

    @pytest.mark.asyncio
    async def test_same_items_in_new_message_are_duplicates(self, processor):
        await processor.handle_email_job(email_job())
        result = await processor.handle_email_job(email_job(message_id="msg-2"))
        assert (result.created, result.duplicates) == (0, 2)

    @pytest.mark.asyncio
    async def test_expired_record_not_fetched(self, processor, records, enqueued):
        body = EMAIL_BODY.replace("March 16, 2099", "March 16, 2001")
        result = await processor.handle_email_job(email_job(body=body))

        assert result.created == 2
        assert [job.source_url for job in enqueued] == ["https://neco.navy.mil/synopsis/detail.aspx?id=2"]

    @pytest.mark.asyncio
    async def test_cancellation_notice_cancels_open_record(
        self, records, ledger, signals, tenant_config, neco_template, enqueued
    ):
        extraction = NECO_TEMPLATE.model_copy(
            update={
                "fields": NECO_TEMPLATE.fields
                + [
                    FieldRule(name="transPurpose", pattern=r"TRANSACTION PURPOSE:\s*([^\n]+)", transform=Transform.TRIM),
                    FieldRule(name="quoteType", pattern=r"QUOTE TYPE:\s*([^\n]+)", transform=Transform.TRIM),
                ]
            }
        )
        registry = TemplateRegistry()
        registry.register(neco_template.model_copy(update={"extraction": extraction}))

        async def enqueue(job):
            enqueued.append(job)
            return job.id

        processor = EmailProcessor(records, ledger, signals, registry, tenant_config, enqueue)
        created = await processor.handle_email_job(email_job())
        result = await processor.handle_email_job(email_job(body=CANCELLATION_BODY, message_id="msg-cancel"))

        assert result.cancellations_detected == 1
        assert result.created == 0
        cancelled = await records.get(TENANT, created.record_ids[0])
        assert cancelled.status == OpportunityStatus.CANCELLED
        assert cancelled.cancellation_source == "email_auto"
        other = await records.get(TENANT, created.record_ids[1])
        assert other.status == OpportunityStatus.NOT_ANALYZED
        assert SignalType.CANCELLATION_DETECTED in [s.signal_type for s in signals.signals]

    @pytest.mark.asyncio
    async def test_unknown_template(self, processor):
        result = await processor.handle_email_job(email_job(template_id="tpl_missing"))
        assert not result.success
        assert result.errors == 1

    @pytest.mark.asyncio
    async def test_page_url_read_from_configured_field(
        self, records, ledger, signals, tenant_config, neco_template, enqueued
    ):
        extraction = NECO_TEMPLATE.model_copy(
            update={
                "fields": [rule for rule in NECO_TEMPLATE.fields if rule.name != "sourceUrl"]
                + [FieldRule(name="noticeLink", pattern=r"HYPERLINK:\s*([^\s]+)", transform=Transform.TRIM)]
            }
        )
        scraping = neco_template.scraping.model_copy(update={"url_field": "noticeLink"})
        registry = TemplateRegistry()
        registry.register(neco_template.model_copy(update={"extraction": extraction, "scraping": scraping}))

        async def enqueue(job):
            enqueued.append(job)
            return job.id

        processor = EmailProcessor(records, ledger, signals, registry, tenant_config, enqueue)
        result = await processor.handle_email_job(email_job())

        first = await records.get(TENANT, result.record_ids[0])
        assert first.source_url == "https://neco.navy.mil/synopsis/detail.aspx?id=1"
        assert len(enqueued) == 2

    @pytest.mark.asyncio
    async def test_template_chosen_by_sender(self, processor, records):
        result = await processor.handle_email_job(email_job(template_id=None))
        assert result.created == 2
        assert (await records.get(TENANT, result.record_ids[0])).template_id == "tpl_neco"

    @pytest.mark.asyncio
    async def test_no_template_accepts_sender(self, processor):
        job = email_job(template_id=None).model_copy(update={"sender": "buyer@example.com"})
        result = await processor.handle_email_job(job)
        assert not result.success
        assert result.created == 0

    @pytest.mark.asyncio
    async def test_failed_create_leaves_notice_importable(
        self, ledger, signals, templates, tenant_config, enqueued
    ):
        records = FlakyRecordStore(failures=1)

        async def enqueue(job):
            enqueued.append(job)
            return job.id

        processor = EmailProcessor(records, ledger, signals, templates, tenant_config, enqueue)
        first = await processor.handle_email_job(email_job())
        assert (first.created, first.errors) == (1, 1)

        retry = await processor.handle_email_job(email_job())
        assert (retry.created, retry.updated, retry.duplicates) == (1, 1, 0)
        solicitations = sorted(r.solicitation_number for r in await records.list_records(TENANT))
        assert solicitations == ["N0010425QA001", "N0010425QA002"]

    @pytest.mark.asyncio
    async def test_no_fetch_jobs_without_scraping(self, records, ledger, signals, tenant_config, neco_template):
        registry = TemplateRegistry()
        registry.register(neco_template.model_copy(update={"scraping": neco_template.scraping.model_copy(update={"enabled": False})}))
        enqueued = []

        async def enqueue(job):
            enqueued.append(job)
            return job.id

        processor = EmailProcessor(records, ledger, signals, registry, tenant_config, enqueue)
        result = await processor.handle_email_job(email_job())
        assert result.created == 2
        assert enqueued == []


@pytest.fixture
def make_handler(records, ledger, signals, tenant_config, templates, sleep):
    def _make(fetcher):
        orchestrator = ScrapeOrchestrator(records, tenant_config, signals, fetcher, templates=templates, sleep=sleep)
        splitter = ChildSplitter(records, ledger, signals)
        return FetchJobHandler(records, orchestrator, splitter, tenant_config, templates, sleep=sleep)

    return _make


async def make_record(records, neco_url, **overrides):
    values = {
        "tenant_id": TENANT,
        "template_id": "tpl_neco",
        "fingerprint": "fp-parent",
        "email_message_id": "msg-1",
        "solicitation_number": "N0010424QK123",
        "source_url": neco_url,
    }
    values.update(overrides)
    record = await records.create(CanonicalOpportunity(**values))
    return record, FetchJob(tenant_id=TENANT, record_id=record.id, source_url=neco_url)


class TestFetchJobHandler:
    @pytest.mark.asyncio
    async def test_cancelled_record_skipped(self, make_handler, make_fetcher, records, neco_url):
        fetcher = make_fetcher()
        _, job = await make_record(records, neco_url, status=OpportunityStatus.CANCELLED)

        result = await make_handler(fetcher).handle_fetch_job(job)

        assert result.outcome == JobOutcome.SKIPPED
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_expired_record_skipped(self, make_handler, make_fetcher, records, neco_url):
        fetcher = make_fetcher()
        record, job = await make_record(records, neco_url, closing_date=datetime(2001, 1, 1, tzinfo=timezone.utc))

        result = await make_handler(fetcher).handle_fetch_job(job)

        assert result.outcome == JobOutcome.SKIPPED
        assert (await records.get(TENANT, record.id)).scraping_status == ScrapingStatus.EXPIRED
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_scrape_splits_children_and_waits(self, make_handler, make_fetcher, records, neco_url, sleep):
        record, job = await make_record(records, neco_url)

        result = await make_handler(make_fetcher()).handle_fetch_job(job)

        assert result.outcome == JobOutcome.COMPLETED
        assert result.scrape.success
        assert result.children_created == 2
        assert len(await records.find_children(TENANT, record.id)) == 2
        assert len(sleep.calls) == 1
        assert 3.0 <= sleep.calls[0] <= 7.0

    @pytest.mark.asyncio
    async def test_error_page_halts_tenant(self, make_handler, make_fetcher, records, neco_url, error_page):
        record, job = await make_record(records, neco_url)

        result = await make_handler(make_fetcher(error_page)).handle_fetch_job(job)

        assert isinstance(result, HaltTenant)
        assert result.tenant_id == TENANT
        assert result.record_id == record.id

    @pytest.mark.asyncio
    async def test_disabled_template_no_delay(self, make_handler, make_fetcher, records, neco_url, sleep):
        fetcher = make_fetcher()
        _, job = await make_record(records, neco_url, template_id=None)

        result = await make_handler(fetcher).handle_fetch_job(job)

        assert result.outcome == JobOutcome.COMPLETED
        assert result.scrape.status == ScrapingStatus.DISABLED
        assert fetcher.calls == []
        assert sleep.calls == []
