"""Child-splitting: one child record per line item of a multi-item notice."""

from __future__ import annotations

import logging
from typing import Any

from noticeflow.document.models import LineItem, StructuralDocument
from noticeflow.errors import DuplicateFingerprint
from noticeflow.extraction.fingerprint import child_fingerprint
from noticeflow.ledger.fingerprints import FingerprintLedger
from noticeflow.records.models import CanonicalOpportunity
from noticeflow.records.store import RecordStore
from noticeflow.signals.emitter import SignalEmitter
from noticeflow.signals.types import SignalType

logger = logging.getLogger(__name__)

# Parent attributes every child inherits unchanged.
INHERITED_FIELDS = (
    "tenant_id",
    "template_id",
    "email_account_id",
    "email_message_id",
    "email_thread_id",
    "email_date",
    "solicitation_number",
    "site",
    "source_url",
    "closing_date",
    "delivery_date",
    "status",
)


def line_item_snapshot(parent_id: str, item: LineItem, document: StructuralDocument) -> dict[str, Any]:
    """The child's ``extracted_data``: its own line item plus document context."""
    item_data = item.model_dump(mode="json", by_alias=True, exclude_none=True)
    return {
        "lineItem": item.line_item,
        "fromParent": parent_id,
        "nsn": item.nsn,
        "nomenclature": item.nomenclature,
        "quantity": item.quantity,
        "unit": item.unit,
        "vendorCode": item.vendor_code,
        "vendorPartNumber": item.vendor_part_number,
        "cageRefNo": item.cage_ref_no,
        "sowText": item.sow_text,
        "subLineItems": item_data.get("subLineItems", []),
        "buyerName": document.buyer_name,
        "buyerEmail": document.buyer_email,
        "buyerPhone": document.buyer_phone,
        "contractType": document.contract_type,
        "setAside": document.set_aside,
        "leadTimeDays": document.lead_time_days,
        "fobPoint": document.fob_point,
    }


class ChildSplitter:
    """Creates child records for parents whose page lists several line items.

    Contract:
    - Only parents with ``children_count == 0`` are split, and only once
    - Children are created in document order
    - A child whose fingerprint is already in the ledger is skipped
    - A child that cannot be created gives its fingerprint back to the ledger
    - ``children_count`` is written once, after every child was attempted
    """

    def __init__(self, records: RecordStore, ledger: FingerprintLedger, signals: SignalEmitter) -> None:
        self._records = records
        self._ledger = ledger
        self._signals = signals

    async def create_children(
        self, tenant_id: str, parent_id: str, document: StructuralDocument
    ) -> list[CanonicalOpportunity]:
        if document.total_line_items <= 1 or len(document.line_items) <= 1:
            return []

        parent = await self._records.get(tenant_id, parent_id)
        if parent is None or parent.is_child:
            return []
        if parent.children_count > 0:
            logger.debug("Parent %s already has %d children, skipping", parent_id, parent.children_count)
            return []

        created: list[CanonicalOpportunity] = []
        for item in document.line_items:
            fingerprint = child_fingerprint(
                parent.solicitation_number, item.line_item, item.nsn, item.vendor_code, item.vendor_part_number
            )
            if (await self._ledger.check(tenant_id, fingerprint)).exists:
                logger.debug("Child fingerprint exists: %s...", fingerprint[:16])
                continue

            child = CanonicalOpportunity(
                **{name: getattr(parent, name) for name in INHERITED_FIELDS},
                fingerprint=fingerprint,
                parent_id=parent.id,
                nsn=item.nsn,
                part_number=item.vendor_part_number,
                manufacturer=item.vendor_code,
                description=item.nomenclature,
                quantity=item.quantity or None,
                unit=item.unit,
                condition=document.item_condition,
                extracted_data=line_item_snapshot(parent.id, item, document),
            )
            try:
                await self._ledger.record(tenant_id, child.id, fingerprint)
            except DuplicateFingerprint:
                logger.debug("Child fingerprint recorded concurrently: %s...", fingerprint[:16])
                continue
            try:
                created.append(await self._records.create(child))
            except Exception:
                await self._ledger.release(tenant_id, child.id)
                raise

        if created:
            await self._records.update(tenant_id, parent_id, {"children_count": len(created)})
            await self._signals.emit(
                SignalType.CHILDREN_CREATED,
                tenant_id,
                record_id=parent_id,
                label=f"{len(created)} line items: {parent.solicitation_number or parent_id}",
                payload={"child_ids": [child.id for child in created]},
            )

        logger.info("Created %d children for parent %s (%s)", len(created), parent_id, parent.solicitation_number)
        return created

    async def find_children(self, tenant_id: str, parent_id: str) -> list[CanonicalOpportunity]:
        return await self._records.find_children(tenant_id, parent_id)
