"""CDRL (contract data requirements list) items.

Each item is rooted at a header reading exactly "CDRL Line Items" and spans
the following CDRL sub-sections up to the next root.
"""

from __future__ import annotations

import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from noticeflow.document.dom import (
    KEY,
    SMALL_VALUE,
    VALUE,
    cells,
    clean_text,
    collect_section,
    first_section_text,
    next_cell,
    section_headers,
    text,
)
from noticeflow.document.models import CdrlItem, ShipToLocation

CDRL_ROOT = "cdrl line items"

_TITLE = re.compile(r"TITLE=(.+)", re.IGNORECASE)
_SUBTITLE = re.compile(r"SUBTITLE=(.+)", re.IGNORECASE)
_LEAD_DAYS = re.compile(r"(\d+)\s*(?:Calendar\s*)?Days", re.IGNORECASE)
_PERIOD_DAYS = re.compile(r"(\d+)\s*(?:Maximum\s*)?(?:Calendar\s*)?Days", re.IGNORECASE)
_DATA_ITEM = re.compile(r"\b(DI-[A-Z]+-\d+[A-Z]?(?:\s*\([^)]+\))?)\b")


def _stop_cdrl_section(nested: str) -> bool:
    return nested == CDRL_ROOT or ("cdrl" not in nested and "data requirement" not in nested)


def _append_unique(values: list[str] | None, value: str) -> list[str]:
    values = list(values or [])
    if value not in values:
        values.append(value)
    return values


def _pair_delta(item: CdrlItem, key: str, value: str) -> dict[str, Any]:
    kl = key.lower()
    if "cdrl" in kl or "data item" in kl or kl == "item":
        return {"cdrl_item": value}
    if kl in ("description", ""):
        delta = {}
        title = _TITLE.search(value)
        if title and not item.title:
            delta["title"] = title.group(1).strip()
        subtitle = _SUBTITLE.search(value)
        if subtitle:
            delta["subtitle"] = subtitle.group(1).strip()
        return delta
    if "item description type" in kl:
        return {"description_type": value}
    if "lead time" in kl:
        days = _LEAD_DAYS.search(value)
        delta = {"lead_time": value}
        if days:
            delta["lead_time_days"] = int(days.group(1))
        return delta
    if "agency" in kl:
        return {"agency_qualifier": value}
    if "code list" in kl:
        return {"code_list_qualifier": value}
    if "industry" in kl:
        return {"industry_list": value}
    if "entity identifier" in kl:
        return {"ship_to_locations": [*(item.ship_to_locations or []), ShipToLocation(entity=value)]}
    return {}


def _section_delta(item: CdrlItem, table: Tag, section: str) -> dict[str, Any]:
    delta: dict[str, Any] = {}
    if ("lead time" in section or "delivery" in section) and not item.lead_time:
        for row in table.find_all("tr"):
            row_cells = cells(row, SMALL_VALUE)
            if len(row_cells) < 2 or "lead_time" in delta:
                continue
            lead, period = clean_text(row_cells[0]), clean_text(row_cells[1])
            if lead and period:
                delta["lead_time"] = f"{lead} - {period}"
                days = _PERIOD_DAYS.search(period)
                if days:
                    delta["lead_time_days"] = int(days.group(1))

    if "reference number" in section:
        numbers, details = item.reference_numbers, item.reference_details
        for raw in (clean_text(cell) for cell in cells(table, SMALL_VALUE)):
            if not raw:
                continue
            match = _DATA_ITEM.search(raw)
            if match:
                numbers = _append_unique(numbers, match.group(1))
            details = details if details is not None else []
            if len(raw) > 2:
                details = _append_unique(details, raw)
        if numbers is not None:
            delta["reference_numbers"] = numbers
        if details is not None:
            delta["reference_details"] = details

    if "clause reference" in section:
        clauses = item.clause_references
        for raw in (clean_text(cell) for cell in cells(table, SMALL_VALUE)):
            if raw:
                clauses = _append_unique(clauses, raw)
        if clauses is not None:
            delta["clause_references"] = clauses

    if "organization" in section or "location" in section:
        locations = list(item.organization_locations or [])
        for row in table.find_all("tr"):
            row_cells = cells(row, SMALL_VALUE)
            if len(row_cells) < 2:
                continue
            values = [v for v in (clean_text(cell) for cell in row_cells) if v]
            if values:
                locations.append(" | ".join(values))
        if locations:
            delta["organization_locations"] = locations
    return delta


def parse_cdrl_item(tables: list[Tag]) -> CdrlItem | None:
    item = CdrlItem()
    for table in tables:
        section = first_section_text(table) or ""
        for key_cell in cells(table, KEY):
            value_cell = next_cell(key_cell, SMALL_VALUE, VALUE)
            if value_cell is None:
                continue
            value = clean_text(value_cell)
            if not value:
                continue
            key = text(key_cell)
            key = key[:-1] if key.endswith(":") else key
            item = item.model_copy(update=_pair_delta(item, key, value))
        item = item.model_copy(update=_section_delta(item, table, section))
    return item if item.cdrl_item else None


def extract_cdrl_items(soup: BeautifulSoup) -> list[CdrlItem]:
    items = []
    for header_text, header in section_headers(soup):
        if header_text.lower() != CDRL_ROOT:
            continue
        item = parse_cdrl_item(collect_section(header, _stop_cdrl_section))
        if item is not None:
            items.append(item)
    return items
