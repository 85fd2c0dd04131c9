"""Tests for child-splitting of multi-line-item notices."""

import pytest

from noticeflow.document.extractor import extract_document
from noticeflow.document.models import LineItem, StructuralDocument
from noticeflow.enrichment.children import ChildSplitter
from noticeflow.extraction.fingerprint import child_fingerprint
from noticeflow.records.models import CanonicalOpportunity
from noticeflow.records.store import InMemoryRecordStore
from noticeflow.signals.types import SignalType

TENANT = "tenant-a"


class FailOnceRecordStore(InMemoryRecordStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail_next = False

    async def create(self, record):
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("record store unavailable")
        return await super().create(record)


@pytest.fixture
def splitter(records, ledger, signals):
    return ChildSplitter(records, ledger, signals)


@pytest.fixture
async def parent(records, neco_url):
    return await records.create(
        CanonicalOpportunity(
            tenant_id=TENANT,
            fingerprint="fp-parent",
            email_message_id="msg-1",
            solicitation_number="N0010424QK123",
            site="NECO",
            source_url=neco_url,
        )
    )


class TestCreateChildren:
    @pytest.mark.asyncio
    async def test_one_child_per_line_item(self, splitter, parent, records, two_item_page):
        children = await splitter.create_children(TENANT, parent.id, extract_document(two_item_page))

        assert [c.extracted_data["lineItem"] for c in children] == ["0001", "0002"]
        first = children[0]
        assert first.parent_id == parent.id
        assert first.solicitation_number == "N0010424QK123"
        assert first.email_message_id == "msg-1"
        assert first.nsn == "5340-01-123-4567"
        assert first.part_number == "PN-555"
        assert first.manufacturer == "K1234"
        assert first.quantity == 5
        assert first.fingerprint == child_fingerprint("N0010424QK123", "0001", "5340-01-123-4567", "K1234", "PN-555")
        assert (await records.get(TENANT, parent.id)).children_count == 2

    @pytest.mark.asyncio
    async def test_split_only_once(self, splitter, parent, records, two_item_page):
        doc = extract_document(two_item_page)
        await splitter.create_children(TENANT, parent.id, doc)
        assert await splitter.create_children(TENANT, parent.id, doc) == []
        assert len(await splitter.find_children(TENANT, parent.id)) == 2

    @pytest.mark.asyncio
    async def test_known_child_fingerprint_skipped(self, splitter, parent, ledger, two_item_page):
        doc = extract_document(two_item_page)
        first = doc.line_items[0]
        await ledger.record(
            TENANT,
            "opp_deleted_child",
            child_fingerprint("N0010424QK123", first.line_item, first.nsn, first.vendor_code, first.vendor_part_number),
        )
        children = await splitter.create_children(TENANT, parent.id, doc)
        assert [c.extracted_data["lineItem"] for c in children] == ["0002"]

    @pytest.mark.asyncio
    async def test_child_fingerprints_claimed_in_ledger(self, splitter, parent, ledger, two_item_page):
        children = await splitter.create_children(TENANT, parent.id, extract_document(two_item_page))
        checks = await ledger.check_many(TENANT, [c.fingerprint for c in children])
        assert {c.id for c in children} == {result.record_id for result in checks.values()}

    @pytest.mark.asyncio
    async def test_single_item_not_split(self, splitter, parent):
        doc = StructuralDocument(line_items=[LineItem(line_item="0001")], total_line_items=1)
        assert await splitter.create_children(TENANT, parent.id, doc) == []

    @pytest.mark.asyncio
    async def test_children_never_split(self, splitter, records, two_item_page):
        child = await records.create(
            CanonicalOpportunity(tenant_id=TENANT, fingerprint="fp-child", parent_id="opp_parent")
        )
        assert await splitter.create_children(TENANT, child.id, extract_document(two_item_page)) == []

    @pytest.mark.asyncio
    async def test_children_created_signal(self, splitter, parent, signals, two_item_page):
        children = await splitter.create_children(TENANT, parent.id, extract_document(two_item_page))
        signal = signals.signals[-1]
        assert signal.signal_type == SignalType.CHILDREN_CREATED
        assert signal.payload["child_ids"] == [c.id for c in children]

    @pytest.mark.asyncio
    async def test_failed_child_returns_fingerprint(self, ledger, signals, two_item_page):
        records = FailOnceRecordStore()
        parent = await records.create(
            CanonicalOpportunity(tenant_id=TENANT, fingerprint="fp-parent", solicitation_number="N0010424QK123")
        )
        splitter = ChildSplitter(records, ledger, signals)
        doc = extract_document(two_item_page)
        first = doc.line_items[0]
        fingerprint = child_fingerprint(
            "N0010424QK123", first.line_item, first.nsn, first.vendor_code, first.vendor_part_number
        )

        records.fail_next = True
        with pytest.raises(RuntimeError):
            await splitter.create_children(TENANT, parent.id, doc)
        assert not (await ledger.check(TENANT, fingerprint)).exists

        children = await splitter.create_children(TENANT, parent.id, doc)
        assert [c.extracted_data["lineItem"] for c in children] == ["0001", "0002"]
        assert (await records.get(TENANT, parent.id)).children_count == 2
