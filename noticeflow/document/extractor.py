"""Structural Document Extractor for NECO solicitation pages.

Contract:
- ``extract_document(html)`` returns a ``StructuralDocument`` for any input
- Steps run in a fixed order; later steps read what earlier ones produced
- A failing step is reported as a skipped section and the rest still run

MUST NOT:
- Raise on malformed, partial, or non-NECO markup
- Perform I/O
"""

from __future__ import annotations

import logging
from typing import Callable

from bs4 import BeautifulSoup

from noticeflow.document.cdrl import extract_cdrl_items
from noticeflow.document.dom import body_text, parse_html, section_headers
from noticeflow.document.header import extract_header_fields
from noticeflow.document.line_items import (
    attach_global_sub_items,
    extract_line_items,
    extract_single_line_item,
    is_main_line_item_header,
)
from noticeflow.document.models import StructuralDocument, SubLineItem
from noticeflow.document.vendor import (
    extract_download_urls,
    extract_item_condition,
    solicitation_type,
    validate_vendor_fields,
)
from noticeflow.errors import StructuralParseAnomaly
from noticeflow.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

Step = Callable[[BeautifulSoup, StructuralDocument], None]


def _sections(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    doc.sections_found = [name for name, _ in section_headers(soup)]


def _status_flags(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    text = body_text(soup)
    if "Cancellation" in text:
        doc.is_cancellation = True
        doc.is_amendment = True
    elif "Amendment" in text:
        doc.is_amendment = True


def _header(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    for name, value in extract_header_fields(soup).items():
        setattr(doc, name, value)


def _line_items(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    if any(is_main_line_item_header(name.lower()) for name in doc.sections_found):
        doc.line_items = extract_line_items(soup)
        return
    single = extract_single_line_item(soup)
    doc.line_items = [single] if single is not None else []


def _cdrl(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    items = extract_cdrl_items(soup)
    if items:
        doc.cdrl_items = items


def _global_sub_items(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    attach_global_sub_items(doc.line_items, soup)


def _vendors(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    validate_vendor_fields(doc.line_items)


def _condition(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    doc.item_condition = extract_item_condition(body_text(soup), doc.line_items)


def _downloads(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    urls = extract_download_urls(soup)
    if urls:
        doc.download_urls = urls
    doc.solicitation_type = solicitation_type(doc.line_items)


def _flatten(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    if not doc.line_items:
        return
    first = doc.line_items[0]
    doc.line_item = first.line_item
    doc.nomenclature = first.nomenclature
    doc.nsn = first.nsn
    doc.quantity = first.quantity
    doc.unit = first.unit
    doc.vendor_code = first.vendor_code
    doc.vendor_part_number = first.vendor_part_number
    doc.material_control_code = first.material_control_code
    doc.special_material_id_code = first.special_material_id_code
    doc.shelf_life_code = first.shelf_life_code
    doc.cage_ref_no = first.cage_ref_no
    if first.sub_line_items:
        doc.sub_line_items = [
            SubLineItem(
                sub_line_item=sub.sub_line_item,
                quantity=sub.quantity,
                unit=sub.unit,
                ship_to=sub.ship_to,
                dodaac=sub.dodaac,
            )
            for sub in first.sub_line_items
        ]


def _totals(soup: BeautifulSoup, doc: StructuralDocument) -> None:
    doc.total_line_items = len(doc.line_items)
    doc.total_sub_line_items = sum(len(item.sub_line_items) for item in doc.line_items)


STEPS: tuple[tuple[str, Step], ...] = (
    ("sections", _sections),
    ("status_flags", _status_flags),
    ("header", _header),
    ("line_items", _line_items),
    ("cdrl", _cdrl),
    ("global_sub_items", _global_sub_items),
    ("vendor_validation", _vendors),
    ("condition", _condition),
    ("download_urls", _downloads),
    ("flatten", _flatten),
    ("totals", _totals),
)


def extract_document(html: str) -> StructuralDocument:
    """Parse a NECO page into a ``StructuralDocument``."""
    doc = StructuralDocument()
    try:
        soup = parse_html(html)
    except Exception as exc:
        _report(StructuralParseAnomaly("parse", str(exc)))
        return doc

    for name, step in STEPS:
        try:
            step(soup, doc)
        except Exception as exc:
            _report(StructuralParseAnomaly(name, str(exc)))

    logger.debug(
        "Structural extraction: %d line item(s), %d CDRL item(s), %d section(s)",
        doc.total_line_items,
        len(doc.cdrl_items or []),
        len(doc.sections_found),
    )
    return doc


def _report(anomaly: StructuralParseAnomaly) -> None:
    emit_structured_error(
        logger,
        code=ErrorCode.STRUCTURAL_SECTION_SKIPPED,
        message=str(anomaly),
        suppressed=True,
        details={"step": anomaly.step},
    )
