"""Key/value strategies over the whole page.

Three views of the same page feed header-level extraction:

- structured pairs: ``tbl_hdr`` key followed by a ``tbl_itm`` value, falling
  back to the first ``tbl_itm`` of the key's row
- sub pairs: ``tbl_hdr`` key followed by a ``tbl_itm_sm`` value, first wins
- inline pairs: free-text ``tbl_itm_sm`` blocks such as
  ``"National Stock Number  5340-01-123-4567"``
"""

from __future__ import annotations

import re
from typing import Mapping

from bs4 import BeautifulSoup

from noticeflow.document.dom import KEY, SMALL_VALUE, VALUE, cells, next_cell, text

KNOWN_LABELS = (
    "Vendor's (Seller's) Part Number",
    "National Stock Number",
    "Nomenclature",
    "Material Control Code",
    "Special Material Identification Code",
    "Shelf-Life Code",
    "Shelf-Life Action Code",
    "Buyer Name or Department",
    "Electronic Mail",
    "Telephone",
    "Facsimile",
    "Department of Defense Activity Address Code",
    "CAGE___Ref. No.",
    "Priority Rating",
    "Purchase Requisition No.",
    "Standard Industry Classification",
    "Small Purchase Set Aside",
    "Transaction Purpose",
    "TDP Drawings",
)

# A label must start within the first few characters of a block.
_LABEL_MAX_OFFSET = 5

_COLON_PAIR = re.compile(r"^(.+?):\s{2,}(.+)$|^(.+?):\s*\xa0\s*(.+)$")
_STANDALONE = (
    re.compile(r"^(Unrestricted.+)$", re.IGNORECASE),
    re.compile(r"^(Small Purchase Set Aside.+)$", re.IGNORECASE),
    re.compile(r"^(From Date of Award.+)$", re.IGNORECASE),
    re.compile(r"^(Defense Priorities.+)$", re.IGNORECASE),
)
_QTY_WITH_UNIT = re.compile(r"^(\d+)\s+(.+)$")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def structured_pairs(soup: BeautifulSoup) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for key_cell in cells(soup, KEY):
        key = text(key_cell)
        if not key:
            continue
        value_cell = next_cell(key_cell, VALUE)
        if value_cell is None:
            row = key_cell.find_parent("tr")
            found = cells(row, VALUE) if row is not None else []
            value_cell = found[0] if found else None
        if value_cell is not None:
            value = text(value_cell)
            if value:
                pairs[key] = value
    return pairs


def sub_pairs(soup: BeautifulSoup) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for key_cell in cells(soup, KEY):
        key = text(key_cell)
        if not key:
            continue
        value = text(next_cell(key_cell, SMALL_VALUE))
        if value and key not in pairs:
            pairs[key] = value
    return pairs


def inline_pairs(soup: BeautifulSoup) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for block in cells(soup, SMALL_VALUE):
        raw = text(block)
        if len(raw) >= 3:
            parse_inline_text(raw, pairs)
    return pairs


def parse_inline_text(raw: str, pairs: dict[str, str]) -> None:
    """Add at most one pair recognized in a free-text block.

    Tried in order: ``Key:  Value`` (two spaces or a non-breaking space after
    the colon), a known label near the start of the block, then standalone
    phrases that are their own key and value. Existing keys are never
    overwritten.
    """
    match = _COLON_PAIR.match(raw)
    if match:
        key = (match.group(1) or match.group(3)).strip()
        value = (match.group(2) or match.group(4)).strip()
        if key and value and key not in pairs:
            pairs[key] = value
            return

    for label in KNOWN_LABELS:
        idx = raw.find(label)
        if 0 <= idx <= _LABEL_MAX_OFFSET:
            value = raw[idx + len(label):].strip()
            if value and label not in pairs:
                pairs[label] = value
                return

    for pattern in _STANDALONE:
        match = pattern.match(raw)
        if match and match.group(1) not in pairs:
            pairs[match.group(1)] = match.group(1)
            return


def parse_quantity(raw: str) -> tuple[int, str | None] | None:
    """``"5 Each"`` -> ``(5, "Each")``; a bare positive integer has no unit."""
    cleaned = re.sub("\xa0+", " ", raw).strip()
    match = _QTY_WITH_UNIT.match(cleaned)
    if match:
        return int(match.group(1)), match.group(2).strip()
    match = _LEADING_INT.match(cleaned)
    if match and int(match.group(1)) > 0:
        return int(match.group(1)), None
    return None


def find_in_map(pairs: Mapping[str, str], search: str) -> str | None:
    """First value whose key contains ``search``, case-insensitive."""
    needle = search.lower()
    for key, value in pairs.items():
        if needle in key.lower():
            return value
    return None


def first_of(pairs: Mapping[str, str], *keys: str) -> str | None:
    for key in keys:
        value = pairs.get(key)
        if value:
            return value
    return None
