"""Post-walk fixes: vendor validation, item condition, download links."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

from noticeflow.document.models import LineItem

logger = logging.getLogger(__name__)

GARBAGE_VENDOR_VALUES = frozenset(
    {
        "number",
        "and",
        "code/reference",
        "code",
        "ref. no.",
        "ref no",
        "vendor",
        "seller",
        "part",
        "vendor's",
        "seller's",
        "cage",
        "cage code",
        "n/a",
        "na",
        "none",
        "see sow",
    }
)

NECO_ORIGIN = "https://neco.navy.mil"

_SEMICOLON_CAGE = re.compile(r";(\w{4,5})\s+(\S+);")
_LABELED_CAGE = re.compile(r"CAGE[_\s]*(?:Ref\.?\s*No\.?)?[:\s]*;?\s*(\w{4,5})\s+(\S+)", re.IGNORECASE)
_CAGE_ONLY = re.compile(r"CAGE[:\s]+(\w{4,5})", re.IGNORECASE)
_PART_ONLY = re.compile(r"(?:P/N|Part\s*(?:No|Number|#))[:\s]+(\S+)", re.IGNORECASE)

_CONDITION_PATTERNS = (
    re.compile(r"'([A-Z])'\s*CONDITION\s*STOCK", re.IGNORECASE),
    re.compile(r"CONDITION\s+'([A-Z])'", re.IGNORECASE),
    re.compile(r"MARK\s+FOR[:\s]*[\s\S]*?'([A-Z])'\s*CONDITION", re.IGNORECASE),
)
_SUB_CONDITION = re.compile(r"'([A-Z])'\s*CONDITION", re.IGNORECASE)
_DOCUMENT_FILE = re.compile(r"\.(pdf|doc|docx|xls|xlsx|zip)$", re.IGNORECASE)


def is_garbage_vendor_value(value: str | None) -> bool:
    """Empty, single-character, or a placeholder label scraped instead of a value."""
    if not value:
        return True
    normalized = value.strip().lower()
    return len(normalized) < 2 or normalized in GARBAGE_VENDOR_VALUES


@dataclass(frozen=True)
class CageReference:
    cage: str
    part_number: str


def cage_from_sow(sow_text: str | None) -> CageReference | None:
    """Recover a CAGE code and part number from free SOW text.

    Strategies, first hit wins: ``;CAGE PART;``, a labeled ``CAGE___Ref. No.``
    block, separate ``CAGE:`` and ``P/N:`` tokens.
    """
    if not sow_text:
        return None

    match = _SEMICOLON_CAGE.search(sow_text)
    if match:
        return CageReference(match.group(1), match.group(2))

    match = _LABELED_CAGE.search(sow_text)
    if match:
        return CageReference(match.group(1).replace(";", ""), match.group(2).replace(";", ""))

    cage = _CAGE_ONLY.search(sow_text)
    part = _PART_ONLY.search(sow_text)
    if cage and part:
        return CageReference(cage.group(1), part.group(1))
    return None


def validate_vendor_fields(items: list[LineItem]) -> None:
    """Replace garbage vendor values from the SOW, or clear them."""
    for item in items:
        code_bad = is_garbage_vendor_value(item.vendor_code)
        part_bad = is_garbage_vendor_value(item.vendor_part_number)
        if not (code_bad or part_bad):
            continue

        recovered = cage_from_sow(item.sow_text)
        if recovered is None:
            if code_bad:
                item.vendor_code = None
            if part_bad:
                item.vendor_part_number = None
            continue

        if code_bad:
            item.vendor_code = recovered.cage
        if part_bad:
            item.vendor_part_number = recovered.part_number
        if not item.cage_ref_no:
            item.cage_ref_no = f"{recovered.cage} {recovered.part_number}"
        logger.debug("Vendor fields of line item %s recovered from SOW", item.line_item)


def extract_item_condition(page_text: str, items: list[LineItem]) -> str | None:
    """Document condition code; sub-items with MARK FOR text get their own or inherit it."""
    condition = None
    for pattern in _CONDITION_PATTERNS:
        match = pattern.search(page_text)
        if match:
            condition = match.group(1)
            break

    for item in items:
        for sub in item.sub_line_items:
            if not sub.mark_for or sub.condition:
                continue
            match = _SUB_CONDITION.search(sub.mark_for)
            if match:
                sub.condition = match.group(1)
            elif condition:
                sub.condition = condition
    return condition


def extract_download_urls(soup: BeautifulSoup) -> list[str]:
    urls: list[str] = []
    for anchor in soup.find_all("a"):
        href = anchor.get("href")
        if not href:
            continue
        if not (_DOCUMENT_FILE.search(href) or "/upload/" in href or "/attachment" in href):
            continue
        if not href.startswith("http") and href.startswith("/"):
            href = f"{NECO_ORIGIN}{href}"
        if href not in urls:
            urls.append(href)
    return urls


def solicitation_type(items: list[LineItem]) -> str:
    """``auto`` when structured identification data exists, else ``manual`` (attachment-driven)."""
    if any(item.nsn or item.vendor_code for item in items):
        return "auto"
    return "manual"
