"""BeautifulSoup helpers for the NECO table layout.

NECO pages are nested tables where a cell's class tells its role:

- ``tbl_hdr_lg``: section header
- ``tbl_hdr``: key cell, followed by its value cell
- ``tbl_itm``: large value cell
- ``tbl_itm_sm``: small value cell, also used for free-text blocks

Class matching is by whole token, so ``tbl_hdr`` never matches
``tbl_hdr_lg``.
"""

from __future__ import annotations

import re
from typing import Iterator

from bs4 import BeautifulSoup, Tag

SECTION = "tbl_hdr_lg"
KEY = "tbl_hdr"
VALUE = "tbl_itm"
SMALL_VALUE = "tbl_itm_sm"

_NBSP_RUN = re.compile("\xa0+")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def has_class(tag: Tag, *names: str) -> bool:
    classes = tag.get("class") or []
    return any(name in classes for name in names)


def cells(root: Tag, *names: str) -> list[Tag]:
    """Descendants of ``root`` carrying any of the given classes, in document order."""
    return root.find_all(lambda tag: has_class(tag, *names))


def text(tag: Tag | None) -> str:
    if tag is None:
        return ""
    return tag.get_text().strip()


def clean_text(tag: Tag | None) -> str:
    """Trimmed text with runs of non-breaking spaces collapsed to one space."""
    return collapse_nbsp(text(tag)).strip()


def collapse_nbsp(value: str) -> str:
    return _NBSP_RUN.sub(" ", value)


def next_cell(tag: Tag, *names: str) -> Tag | None:
    """The immediately following sibling element, only if it has one of ``names``."""
    sibling = tag.find_next_sibling()
    if sibling is not None and has_class(sibling, *names):
        return sibling
    return None


def closest_table(tag: Tag) -> Tag | None:
    if tag.name == "table":
        return tag
    return tag.find_parent("table")


def following_blocks(start: Tag) -> Iterator[Tag]:
    """Element siblings after ``start``, in document order."""
    sibling = start.find_next_sibling()
    while sibling is not None:
        yield sibling
        sibling = sibling.find_next_sibling()


def first_section_text(block: Tag) -> str | None:
    """Lowercased text of the first section header nested in ``block``."""
    found = cells(block, SECTION)
    if not found:
        return None
    return text(found[0]).lower()


def body_text(soup: BeautifulSoup) -> str:
    return (soup.body or soup).get_text()


def section_headers(soup: BeautifulSoup) -> list[tuple[str, Tag]]:
    """Every section header with non-empty text, as ``(text, cell)``."""
    return [(text(cell), cell) for cell in cells(soup, SECTION) if text(cell)]


def collect_section(header: Tag, stop) -> list[Tag]:
    """The header's table plus following sibling blocks up to a stop header.

    ``stop`` receives the lowercased text of the first section header nested
    in each following block; blocks without a nested header are always kept.
    """
    table = closest_table(header)
    if table is None:
        return []
    blocks = [table]
    for block in following_blocks(table):
        nested = first_section_text(block)
        if nested is not None and stop(nested):
            break
        blocks.append(block)
    return blocks


def section_text(block: Tag) -> str:
    """Concatenated text of every section header in ``block``, lowercased."""
    return "".join(cell.get_text() for cell in cells(block, SECTION)).strip().lower()
