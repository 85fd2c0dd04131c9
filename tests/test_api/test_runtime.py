"""End-to-end: email in, lane fetch, enrichment and children out."""

from datetime import datetime, timezone

import pytest

from noticeflow.api.runtime import PipelineRuntime
from noticeflow.config.settings import LaneConfig, NoticeflowConfig
from noticeflow.records.models import ScrapingStatus
from noticeflow.signals.types import SignalType
from noticeflow.worker.jobs import ParseEmailJob

EMAIL_BODY = (
    "NECO SOLICITATION NUMBER: N0010424QK123\r\n"
    "CLOSING DATE: March 16, 2099\r\n"
    "HYPERLINK: https://neco.navy.mil/synopsis/detail.aspx?id=1\r\n"
    "Nomenclature: LINE ITEM 0001\r\n"
)


@pytest.fixture
async def runtime(make_fetcher, sleep, neco_template):
    config = NoticeflowConfig(lane=LaneConfig(max_starts=10, window_ms=1000))
    runtime = PipelineRuntime(config, fetcher=make_fetcher(), sleep=sleep)
    runtime.templates.register(neco_template)
    yield runtime
    await runtime.shutdown()


class TestPipelineRuntime:
    @pytest.mark.asyncio
    async def test_email_to_enriched_parent_and_children(self, runtime):
        result = await runtime.handle_email(
            ParseEmailJob(
                tenant_id="tenant-a",
                template_id="tpl_neco",
                email_message_id="msg-1",
                email_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
                body=EMAIL_BODY,
            )
        )
        assert result.created == 1
        assert len(result.fetch_job_ids) == 1

        await runtime.lanes.get("tenant-a").join()

        parent = await runtime.records.get("tenant-a", result.record_ids[0])
        assert parent.scraping_status == ScrapingStatus.SUCCESS
        assert parent.description == "VALVE ASSEMBLY"
        assert parent.part_number == "PN-555"
        assert parent.quantity == 5
        assert parent.children_count == 2

        children = await runtime.records.find_children("tenant-a", parent.id)
        assert sorted(c.extracted_data["lineItem"] for c in children) == ["0001", "0002"]
        assert SignalType.CHILDREN_CREATED in [s.signal_type for s in runtime.signals.signals]

    @pytest.mark.asyncio
    async def test_reprocess_without_pages_is_empty(self, runtime):
        summary = await runtime.reprocess("tenant-a", limit=10, only_failed=False)
        assert summary["processed"] == 0
        assert summary["children_created"] == 0
