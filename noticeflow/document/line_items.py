"""Line-item walk over a scoped collection of NECO tables.

Walking state lives in ``LineItemWalk``. Section handlers (packaging,
physical details, SOW/clauses, sub-line fields) are pure functions that read
a table and return a delta; the walker is the only code that mutates state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

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
    section_text,
    text,
)
from noticeflow.document.models import DateReference, LineItem, SubLineItem
from noticeflow.document.pairs import first_of, inline_pairs, parse_inline_text, parse_quantity, structured_pairs, sub_pairs

Delta = dict[str, Any]

SUB_SECTION_KEYWORDS = (
    "product",
    "description",
    "packaging",
    "marking",
    "physical",
    "clause",
    "reference",
    "loading",
    "detail",
)

SUB_LINE_KEYS = ("Sub-Line Item:", "Sub-Line Item")
LINE_ITEM_KEYS = ("Line Item:", "Line Item")
QUANTITY_KEYS = ("Quantity:", "Quantity")
DEFAULT_LINE_ITEM = "0001"

_DODAAC = re.compile(r"DODAAC\)?\s*(\S+)")
_SHIP_TO_PREFIX = re.compile(r"^\s*Ship To\s*")
_CITY_STATE_ZIP = re.compile(r"^[A-Z][A-Z\s]+,\s*[A-Z]{2}\s+\d{5}")
_PACKING_CODE = re.compile(r"^([A-Za-z\s/]+?)\s{2,}(\S+)$")
_WEIGHT = re.compile(r"(?:Weight|Wt)[:\s]+(.+)", re.IGNORECASE)
_VOLUME = re.compile(r"(?:Volume|Vol)[:\s]+(.+)", re.IGNORECASE)
_DIMENSIONS = re.compile(r"(?:Dimension|L/W/H)[:\s]+(.+)", re.IGNORECASE)
_PACK_SIZE = re.compile(r"(?:Pack Size)[:\s]+(\d+)", re.IGNORECASE)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_DRAWING = re.compile(r"\b(?:RE-[A-Z]?\d+|DWG[-\s]?\d+|[A-Z]{1,3}-[A-Z]?\d{4,})\b")
_DOC_REF = re.compile(r"\b(?:MIL-(?:STD|SPEC|PRF|DTL|HDBK)-\S+|ISO\s*\d+|SAE\s+\S+|ASTM\s+\S+|AS\d{4,}|AMS\s*\d+)\b")
_SOW_CAGE = re.compile(r"CAGE[_\s]*(?:Ref\.?\s*No\.?)?[:\s]*;?\s*(\S+)\s+(\S+)", re.IGNORECASE)
_PRIORITY_RATING = re.compile(r"Priority Rating\s+(\S+)")

SOW_TEXT_LIMIT = 5000


def is_main_line_item_header(header: str) -> bool:
    """``header`` is lowercased. Sub-sections such as "Line Item Packaging" and CDRL roots are excluded."""
    if "line item" not in header or "sub-line" in header or is_cdrl_header(header):
        return False
    return not any(keyword in header for keyword in SUB_SECTION_KEYWORDS)


def is_cdrl_header(header: str) -> bool:
    return "cdrl" in header or "data requirement" in header or "contract data" in header


def _strip_colon(key: str) -> str:
    return key[:-1] if key.endswith(":") else key


def _key_values(table: Tag, *, clean: bool = False):
    """``(key, value)`` for every key cell followed by a value cell."""
    for key_cell in cells(table, KEY):
        value_cell = next_cell(key_cell, SMALL_VALUE, VALUE)
        if value_cell is None:
            continue
        yield text(key_cell), clean_text(value_cell) if clean else text(value_cell)


# --- Section handlers ---


def sub_line_field_delta(sub: SubLineItem, key: str, value: str) -> Delta:
    name = _strip_colon(key)
    delta: Delta = {}
    if name == "Quantity":
        parsed = parse_quantity(value)
        if parsed:
            delta["quantity"], delta["unit"] = parsed
    elif name in ("Unit Price", "Unit Price Amount"):
        delta["unit_price"] = value
    elif name == "Entity Identifier":
        if "Ship To" in value:
            delta["ship_to"] = _SHIP_TO_PREFIX.sub("", value).strip()
    elif name == "DoD Identification":
        match = _DODAAC.search(value) if "DODAAC" in value else None
        if match:
            delta["dodaac"] = match.group(1)
    elif name == "Mark For" or "MARK FOR" in key:
        delta["mark_for"] = value
    elif "Condition" in key:
        delta["condition"] = value
    elif "Priority" in key:
        delta["priority_rating"] = value
    elif "Internal Order" in key:
        delta["internal_order_number"] = value
    elif name == "Product/Item Description" or "Product Description" in key:
        delta["product_description"] = value
    elif name == "Data Category Code":
        delta["data_category_code"] = value
    elif "Preparer" in key:
        delta["preparer"] = value
    elif "Authorizer" in key:
        delta["authorizer"] = value
    elif "Date" in key and ("Production" in key or "Approved" in key):
        kind = "Production" if "Production" in key else "Approved"
        delta["date_references"] = [*(sub.date_references or []), DateReference(type=kind, date=value)]

    if _CITY_STATE_ZIP.match(value) and not sub.city_state_zip:
        delta["city_state_zip"] = value
    return delta


def packaging_delta(table: Tag) -> Delta:
    codes: dict[str, str] = {}
    standard = None
    for key, value in _key_values(table):
        key = _strip_colon(key)
        if not key or not value:
            continue
        if "standard" in key.lower() or "mil-std" in key.lower():
            standard = value
        else:
            codes[key] = value

    for raw in (text(cell) for cell in cells(table, SMALL_VALUE)):
        if not raw:
            continue
        match = _PACKING_CODE.match(raw)
        if match:
            codes[match.group(1).strip()] = match.group(2).strip()
        if "MIL-STD" in raw:
            standard = raw

    delta: Delta = {}
    if codes:
        delta["packaging_codes"] = codes
    if standard:
        delta["packaging_standard"] = standard
    return delta


def physical_delta(table: Tag, current: Mapping[str, Any]) -> Delta:
    delta: Delta = {}
    for key, value in _key_values(table):
        key = _strip_colon(key).lower()
        if not value:
            continue
        if "weight" in key:
            delta["weight"] = value
        elif "volume" in key:
            delta["volume"] = value
        elif "dimension" in key:
            delta["dimensions"] = value
        elif "pack" in key and "size" in key:
            match = _LEADING_INT.match(value)
            if match:
                delta["pack_size"] = int(match.group(1))
        elif "pack" in key and "unit" in key:
            delta["pack_unit"] = value

    def missing(name: str) -> bool:
        return not (delta.get(name) or current.get(name))

    for raw in (text(cell) for cell in cells(table, SMALL_VALUE)):
        if not raw:
            continue
        for name, pattern in (("weight", _WEIGHT), ("volume", _VOLUME), ("dimensions", _DIMENSIONS)):
            match = pattern.search(raw)
            if match and missing(name):
                delta[name] = match.group(1).strip()
        match = _PACK_SIZE.search(raw)
        if match and missing("pack_size"):
            delta["pack_size"] = int(match.group(1))
    return delta


def sow_delta(table: Tag, current: Mapping[str, Any]) -> Delta:
    """Free text, drawing numbers, document references and a CAGE fallback."""
    blocks: list[str] = []
    drawings: list[str] = []
    doc_refs: list[str] = []
    for raw in (text(cell) for cell in cells(table, SMALL_VALUE, VALUE)):
        if not raw:
            continue
        blocks.append(raw)
        drawings.extend(_DRAWING.findall(raw))
        doc_refs.extend(_DOC_REF.findall(raw))

    delta: Delta = {}
    for raw in (text(cell) for cell in cells(table, SMALL_VALUE)):
        match = _SOW_CAGE.search(raw)
        if match and not (delta.get("vendor_code") or current.get("vendor_code")):
            delta["vendor_code"] = match.group(1).replace(";", "")
            delta["vendor_part_number"] = match.group(2).replace(";", "")
            delta["cage_ref_no"] = f"{match.group(1)} {match.group(2)}".replace(";", "").strip()

    if blocks:
        delta["sow_text"] = "\n".join(blocks)[:SOW_TEXT_LIMIT]
    if drawings:
        delta["drawing_numbers"] = list(dict.fromkeys(drawings))
    if doc_refs:
        delta["document_references"] = list(dict.fromkeys(doc_refs))
    return delta


def identity_delta(inline: Mapping[str, str], pairs: Mapping[str, str], current_vendor_code: str | None) -> Delta:
    """Identification fields from inline labels, with the CAGE reference as vendor fallback."""
    delta: Delta = {
        "nsn": inline.get("National Stock Number"),
        "nomenclature": first_of(inline, "Nomenclature") or first_of(pairs, "General Desc:", "General Desc"),
        "material_control_code": inline.get("Material Control Code"),
        "special_material_id_code": inline.get("Special Material Identification Code"),
        "shelf_life_code": inline.get("Shelf-Life Code"),
        "shelf_life_action_code": inline.get("Shelf-Life Action Code"),
    }
    vendor_raw = inline.get("Vendor's (Seller's) Part Number")
    if vendor_raw:
        parts = vendor_raw.split()
        if parts:
            delta["vendor_code"] = parts[0]
        if len(parts) >= 2:
            delta["vendor_part_number"] = " ".join(parts[1:])

    if not (delta.get("vendor_code") or current_vendor_code):
        cage_ref = inline.get("CAGE___Ref. No.")
        if cage_ref:
            cleaned = cage_ref.replace(";", "").strip()
            parts = cleaned.split()
            if len(parts) >= 2:
                delta["vendor_code"] = parts[0]
                delta["vendor_part_number"] = " ".join(parts[1:])
            delta["cage_ref_no"] = cleaned
    return delta


def quantity_delta(raw: str | None) -> Delta:
    parsed = parse_quantity(raw) if raw else None
    if parsed is None:
        return {}
    return {"quantity": parsed[0], "unit": parsed[1]}


def sub_quantity_fallback(item: LineItem) -> None:
    """Sum sub-item quantities into an item without one; unit from the first sub-item."""
    if item.quantity:
        return
    total = sum(sub.quantity or 0 for sub in item.sub_line_items)
    if total > 0:
        item.quantity = total
        item.unit = item.sub_line_items[0].unit


# --- Walker ---


@dataclass
class LineItemWalk:
    line_item: str = ""
    fields: Delta = field(default_factory=dict)
    pairs: dict[str, str] = field(default_factory=dict)
    inline: dict[str, str] = field(default_factory=dict)
    sub_items: list[SubLineItem] = field(default_factory=list)
    current_sub: SubLineItem | None = None
    in_sub: bool = False

    def close_sub(self) -> None:
        if self.current_sub is not None:
            self.sub_items.append(self.current_sub)
            self.current_sub = None


def _walk_table(walk: LineItemWalk, table: Tag) -> None:
    header = section_text(table)
    if header:
        if "sub-line" in header:
            walk.in_sub = True
        elif "product" in header or "item description" in header:
            pass
        elif "packaging" in header:
            walk.fields.update(packaging_delta(table))
            return
        elif "physical" in header:
            walk.fields.update(physical_delta(table, walk.fields))
            return
        elif "clause" in header or "sow" in header or "statement of work" in header:
            walk.fields.update(sow_delta(table, walk.fields))
            return

    for key, value in _key_values(table):
        if not key or not value:
            continue
        if key in SUB_LINE_KEYS:
            walk.close_sub()
            walk.current_sub = SubLineItem(sub_line_item=value)
            walk.in_sub = True
            continue
        if key in LINE_ITEM_KEYS:
            walk.line_item = value
            continue
        if walk.in_sub and walk.current_sub is not None:
            walk.current_sub = walk.current_sub.model_copy(
                update=sub_line_field_delta(walk.current_sub, key, value)
            )
            continue
        walk.pairs[key] = value

    for raw in (text(cell) for cell in cells(table, SMALL_VALUE)):
        if len(raw) >= 3:
            parse_inline_text(raw, walk.inline)


def parse_line_item(tables: list[Tag]) -> LineItem | None:
    walk = LineItemWalk()
    for table in tables:
        _walk_table(walk, table)
    walk.close_sub()

    number = walk.line_item
    if not number and "National Stock Number" not in walk.inline:
        number = first_of(walk.pairs, *LINE_ITEM_KEYS)
        if not number:
            return None

    fields = dict(walk.fields)
    fields.update(identity_delta(walk.inline, walk.pairs, fields.get("vendor_code")))
    fields.update(quantity_delta(first_of(walk.pairs, *QUANTITY_KEYS)))
    item = LineItem(line_item=number, sub_line_items=walk.sub_items, **fields)
    sub_quantity_fallback(item)
    return item


def extract_line_items(soup: BeautifulSoup) -> list[LineItem]:
    """One item per main line-item header, scoped to the blocks before the next main or CDRL header."""
    items = []
    for header_text, header in section_headers(soup):
        if not is_main_line_item_header(header_text.lower()):
            continue
        tables = collect_section(header, lambda nested: is_main_line_item_header(nested) or is_cdrl_header(nested))
        item = parse_line_item(tables)
        if item is not None:
            items.append(item)
    return items


def extract_single_line_item(soup: BeautifulSoup) -> LineItem | None:
    """Whole-page extraction for simple layouts without line-item sections."""
    small = sub_pairs(soup)
    inline = inline_pairs(soup)
    structured = structured_pairs(soup)

    fields = identity_delta(inline, structured, None)
    fields.update(quantity_delta(first_of(small, *QUANTITY_KEYS)))
    if not fields.get("quantity"):
        fields.update(quantity_delta(first_of(structured, *QUANTITY_KEYS)))

    item = LineItem(
        line_item=first_of(small, *LINE_ITEM_KEYS) or DEFAULT_LINE_ITEM,
        sub_line_items=extract_sub_line_items_legacy(soup),
        **fields,
    )
    sub_quantity_fallback(item)
    if item.nsn or item.nomenclature or item.vendor_code or item.quantity:
        return item
    return None


def extract_sub_line_items_legacy(soup: BeautifulSoup) -> list[SubLineItem]:
    walk = LineItemWalk()
    for key_cell in cells(soup, KEY):
        value_cell = next_cell(key_cell, SMALL_VALUE)
        if value_cell is None:
            continue
        key, value = text(key_cell), text(value_cell)
        if key in SUB_LINE_KEYS:
            walk.close_sub()
            walk.current_sub = SubLineItem(sub_line_item=value)
        elif walk.current_sub is not None:
            walk.current_sub = walk.current_sub.model_copy(
                update=sub_line_field_delta(walk.current_sub, key, value)
            )
    walk.close_sub()
    return walk.sub_items


def _stop_sub_line_section(nested: str) -> bool:
    return nested == "sub-line items" or "sub-line" not in nested


def extract_sub_line_items_global(soup: BeautifulSoup) -> list[SubLineItem]:
    """Sub-line sections rooted at a "Sub-Line Items" header, wherever they sit on the page."""
    items = []
    for header_text, header in section_headers(soup):
        if header_text.lower() != "sub-line items":
            continue
        sub = SubLineItem()
        for table in collect_section(header, _stop_sub_line_section):
            for key, value in _key_values(table, clean=True):
                if not value:
                    continue
                if key in SUB_LINE_KEYS:
                    sub = sub.model_copy(update={"sub_line_item": value})
                else:
                    sub = sub.model_copy(update=sub_line_field_delta(sub, key, value))

            name = first_section_text(table) or ""
            for raw in (clean_text(cell) for cell in cells(table, SMALL_VALUE)):
                if "mark" in name and "MARK FOR:" in raw:
                    sub = sub.model_copy(update={"mark_for": raw.replace("MARK FOR:", "", 1).strip()})
                if "reference number" in name and "Priority Rating" in raw:
                    match = _PRIORITY_RATING.search(raw)
                    if match:
                        sub = sub.model_copy(update={"priority_rating": match.group(1)})
        if sub.sub_line_item:
            items.append(sub)
    return items


def attach_global_sub_items(items: list[LineItem], soup: BeautifulSoup) -> None:
    """Give the first item the page's sub-line sections when no item found any."""
    if not items or any(item.sub_line_items for item in items):
        return
    subs = extract_sub_line_items_global(soup)
    if not subs:
        return
    first = items[0]
    first.sub_line_items = subs
    if not first.quantity:
        total = sum(sub.quantity or 0 for sub in subs)
        if total > 0:
            first.quantity = total
            unit = next((sub.unit for sub in subs if sub.unit), None)
            if unit:
                first.unit = unit

