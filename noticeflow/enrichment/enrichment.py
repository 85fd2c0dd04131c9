"""Record enrichment: folding scraped and emailed data into canonical records.

Contract:
- Scraped values win over emailed values once a record scraped successfully
- Identity and scheduling fields (solicitation number, site, URL, dates)
  always follow the latest email
- Cancelling a record appends to its status history and is a no-op for a
  record that is already cancelled
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from noticeflow.document.models import StructuralDocument
from noticeflow.records.models import CanonicalOpportunity, OpportunityStatus, ScrapingStatus
from noticeflow.records.store import RecordStore
from noticeflow.signals.emitter import SignalEmitter

logger = logging.getLogger(__name__)

_LINE_ITEM_PLACEHOLDER = re.compile(r"^LINE ITEM", re.IGNORECASE)

# Canonical attributes an extracted field may feed, in lookup order.
KNOWN_CANONICAL_FIELDS = (
    "solicitation_number",
    "site",
    "source_url",
    "part_number",
    "manufacturer",
    "description",
    "nsn",
    "condition",
    "unit",
    "quantity",
    "closing_date",
    "delivery_date",
    "trans_purpose",
    "quote_type",
)

ALWAYS_REFRESHED_FIELDS = ("solicitation_number", "site", "source_url", "closing_date", "delivery_date")
SCRAPE_OWNED_FIELDS = ("part_number", "manufacturer", "description", "nsn", "condition", "unit", "quantity")


def build_enrichment(document: StructuralDocument, current_description: str | None) -> dict[str, Any]:
    """Canonical field changes derived from the first line item of a page.

    Quantity comes from the item itself, or from the sum of its sub-line
    quantities when the item has none.
    """
    if not document.line_items:
        return {}

    first = document.line_items[0]
    changes: dict[str, Any] = {}

    if first.quantity:
        changes["quantity"] = first.quantity
        if first.unit:
            changes["unit"] = first.unit
    else:
        total = sum(sub.quantity or 0 for sub in first.sub_line_items)
        if total > 0:
            changes["quantity"] = total
            unit = next((sub.unit for sub in first.sub_line_items if sub.unit), None)
            if unit:
                changes["unit"] = unit

    if first.vendor_part_number:
        changes["part_number"] = first.vendor_part_number
    if first.vendor_code:
        changes["manufacturer"] = first.vendor_code
    if document.item_condition:
        changes["condition"] = document.item_condition

    if first.nomenclature and (not current_description or _LINE_ITEM_PLACEHOLDER.match(current_description)):
        changes["description"] = first.nomenclature

    return changes


def _squash(name: str) -> str:
    return name.replace("_", "").lower()


def map_extracted_fields(data: Mapping[str, Any], field_mapping: Mapping[str, str]) -> dict[str, Any]:
    """Map an extracted item onto canonical attribute names.

    The schema's explicit mapping is applied first; canonical names still
    unset are then filled from extracted keys that contain them, ignoring
    case and underscores.
    """
    mapped: dict[str, Any] = {}
    for extracted_name, canonical_name in field_mapping.items():
        value = data.get(extracted_name)
        if value is not None:
            mapped[canonical_name] = value

    for canonical_name in KNOWN_CANONICAL_FIELDS:
        if mapped.get(canonical_name) is not None:
            continue
        wanted = _squash(canonical_name)
        for key, value in data.items():
            if value is None:
                continue
            if wanted in _squash(key):
                mapped[canonical_name] = value
                break

    return mapped


def _coerce_quantity(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric quantity %r", value)
        return None


def canonical_values(mapped: Mapping[str, Any]) -> dict[str, Any]:
    """Record attributes for a newly created record, quantities coerced."""
    values = {name: mapped.get(name) for name in ALWAYS_REFRESHED_FIELDS + SCRAPE_OWNED_FIELDS}
    values["quantity"] = _coerce_quantity(values["quantity"])
    return {name: value for name, value in values.items() if value not in (None, "")}


def merge_email_update(record: CanonicalOpportunity, mapped: Mapping[str, Any]) -> dict[str, Any]:
    """Changes to apply to an existing record when its email is seen again."""
    changes: dict[str, Any] = {}
    for name in ALWAYS_REFRESHED_FIELDS:
        if mapped.get(name):
            changes[name] = mapped[name]

    if record.scraping_status != ScrapingStatus.SUCCESS:
        for name in SCRAPE_OWNED_FIELDS:
            if not mapped.get(name):
                continue
            if name == "quantity":
                quantity = _coerce_quantity(mapped[name])
                if quantity is not None:
                    changes[name] = quantity
            else:
                changes[name] = mapped[name]

    return changes


async def cancel_record(
    records: RecordStore,
    signals: SignalEmitter,
    tenant_id: str,
    record_id: str,
    *,
    source: str,
    reason: str,
) -> CanonicalOpportunity | None:
    """Move a record to the cancelled workflow status and announce it.

    Returns ``None`` when the record is missing or already cancelled.
    """
    record = await records.get(tenant_id, record_id)
    if record is None or record.status == OpportunityStatus.CANCELLED:
        return None

    previous_status = record.status
    working = record.model_copy(deep=True)
    working.cancel(source, reason)
    updated = await records.update(
        tenant_id,
        record_id,
        {
            "status": working.status,
            "status_history": working.status_history,
            "cancelled_at": working.cancelled_at,
            "cancellation_source": working.cancellation_source,
        },
    )
    await signals.emit_cancellation(
        tenant_id, record_id, updated.solicitation_number, previous_status.value, source
    )
    logger.warning("Record %s (%s) cancelled via %s", record_id, updated.solicitation_number, source)
    return updated
