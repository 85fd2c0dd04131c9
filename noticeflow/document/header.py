"""Header-level fields of a notice, extracted once per page.

Each function returns a delta (field name -> value) for ``StructuralDocument``;
keys are only present when a value was found.
"""

from __future__ import annotations

import re
from typing import Any

from bs4 import BeautifulSoup

from noticeflow.document.dom import KEY, SECTION, SMALL_VALUE, VALUE, body_text, cells, closest_table, next_cell, text
from noticeflow.document.pairs import find_in_map, first_of, inline_pairs, structured_pairs

_ISSUE_DATE = re.compile(r"(\w{3}\s+\d{1,2},?\s+\d{4})")
_SOLICITATION = re.compile(r"Solicitation\s+(?:Number|#)[:\s]*([A-Z0-9-]+)", re.IGNORECASE)
_CLOSING = re.compile(r"(\w+,\s+\w+\s+\d{1,2},?\s+\d{4})\s*([\d:]+\s*[ap]m)?(?:\s+(\w+))?", re.IGNORECASE)
_CALENDAR_DAYS = re.compile(r"(\d+)\s*Calendar\s*Days", re.IGNORECASE)
_DODAAC = re.compile(r"DODAAC\)?\s*(\S+)")
_DODAAC_CODE = re.compile(r"([A-Z0-9]{6})")
_ADDRESS = re.compile(r"^([A-Z][A-Z\s]+),\s*([A-Z]{2})\s+(\d{5}(?:-\d{4})?)(?:\s+(.+))?$")

Delta = dict[str, Any]


def extract_header_fields(soup: BeautifulSoup) -> Delta:
    structured = structured_pairs(soup)
    inline = inline_pairs(soup)
    delta: Delta = {}

    delta["trans_purpose"] = first_of(inline, "Transaction Purpose") or structured.get("Transaction Purpose:")
    delta["contract_type"] = first_of(structured, "Contract Type:", "Contract Type")
    delta["purchase_category"] = first_of(structured, "Purchase Category:", "Purchase Category")
    delta["fsc"] = find_in_map(structured, "Federal Supply")
    delta["tdp_drawings"] = first_of(inline, "TDP Drawings") or structured.get("TDP Drawings:")

    issue_raw = first_of(structured, "Issue Date:", "Issue Date")
    if issue_raw:
        match = _ISSUE_DATE.search(issue_raw)
        delta["issue_date"] = match.group(1) if match else issue_raw

    match = _SOLICITATION.search(body_text(soup))
    if match:
        delta["solicitation_number"] = match.group(1)

    delta.update(_closing(inline))
    delta.update(_reference_numbers(inline))
    delta["set_aside"] = _set_aside(inline)
    delta.update(fob_fields(soup, structured))
    delta.update(lead_time_fields(soup, inline))
    delta.update(buyer_fields(soup, inline))
    delta.update(admin_communications(inline))
    delta.update(document_links(soup))
    return {key: value for key, value in delta.items() if value is not None}


def _closing(inline: dict[str, str]) -> Delta:
    for key, value in inline.items():
        kl = key.lower()
        if "received by" not in kl and "quote to be" not in kl:
            continue
        match = _CLOSING.search(value)
        if not match:
            return {"closing_date": value}
        delta = {"closing_date": match.group(1).strip()}
        if match.group(2):
            delta["closing_time"] = match.group(2).strip()
        if match.group(3):
            delta["closing_timezone"] = match.group(3).strip()
        return delta
    return {}


def _reference_numbers(inline: dict[str, str]) -> Delta:
    delta: Delta = {}
    for key, value in inline.items():
        kl = key.lower()
        if "purchase requisition" in kl:
            delta["purchase_requisition_no"] = value
        elif "dpas" in kl or "priority rating" in kl:
            delta["dpas_rating"] = value
        elif "sic" in kl and "code" in kl:
            delta["sic_code"] = value
    return delta


def _set_aside(inline: dict[str, str]) -> str | None:
    for key in inline:
        kl = key.lower()
        if "set aside" in kl or "unrestricted" in kl:
            return key
    for value in inline.values():
        vl = value.lower()
        if "set aside" in vl or "unrestricted" in vl:
            return value
    return None


def fob_fields(soup: BeautifulSoup, structured: dict[str, str]) -> Delta:
    delta: Delta = {}
    for header in cells(soup, SECTION):
        if "fob" not in text(header).lower():
            continue
        table = closest_table(header)
        if table is None:
            continue
        for cell in cells(table, SMALL_VALUE):
            cell_text = text(cell)
            if not cell_text:
                continue
            cl = cell_text.lower()
            if ("origin" in cl or "destination" in cl or "shipping point" in cl) and "fob_point" not in delta:
                delta["fob_point"] = cell_text
            if "paid by" in cl:
                delta["shipment_payment"] = cell_text
            if "acceptance" in cl:
                delta["acceptance_point"] = cell_text

    if "fob_point" not in delta:
        fob = first_of(structured, "FOB Point:", "FOB Point") or find_in_map(structured, "FOB")
        if fob:
            delta["fob_point"] = fob
    return delta


def lead_time_fields(soup: BeautifulSoup, inline: dict[str, str]) -> Delta:
    delta: Delta = {}
    for header in cells(soup, SECTION):
        if "Lead Time" not in text(header):
            continue
        table = closest_table(header)
        if table is None:
            continue
        rows = []
        for row in table.find_all("tr"):
            row_texts = [text(cell) for cell in cells(row, SMALL_VALUE) if text(cell)]
            if row_texts:
                rows.append(" | ".join(row_texts))
        if rows:
            delta["lead_time"] = "; ".join(rows)
            match = _CALENDAR_DAYS.search(delta["lead_time"])
            if match:
                delta["lead_time_days"] = int(match.group(1))

    if "lead_time" in delta:
        return delta

    for key in inline:
        if "date of award" not in key.lower():
            continue
        delta["lead_time"] = key
        for value in inline.values():
            match = _CALENDAR_DAYS.search(value)
            if match:
                delta["lead_time_days"] = int(match.group(1))
                delta["lead_time"] = f"{key} | {value}"
                break
        break
    return delta


def buyer_fields(soup: BeautifulSoup, inline: dict[str, str]) -> Delta:
    delta: Delta = {}
    for header in cells(soup, SECTION):
        title = text(header).lower()
        if "trading partner" not in title and "contact" not in title and "buyer" not in title:
            continue
        table = closest_table(header)
        if table is None:
            continue

        for key_cell in cells(table, KEY):
            key = text(key_cell)
            value_cell = next_cell(key_cell, SMALL_VALUE, VALUE)
            if value_cell is None:
                continue
            value = text(value_cell)
            if "Entity" in key and "Buyer" in value:
                name_cell = next_cell(value_cell, SMALL_VALUE)
                if name_cell is not None:
                    delta["buyer_entity"] = text(name_cell)
            if "DoD" in key and "DODAAC" in value:
                match = _DODAAC.search(value)
                if match:
                    delta["buyer_dodaac"] = match.group(1)

        for block in (text(cell) for cell in cells(table, SMALL_VALUE)):
            match = _ADDRESS.match(block) if block else None
            if match:
                delta["buyer_city"] = match.group(1).strip()
                delta["buyer_state"] = match.group(2)
                delta["buyer_zip"] = match.group(3)
                if match.group(4):
                    delta["buyer_country"] = match.group(4).strip()

    if "buyer_dodaac" not in delta:
        dodaac = inline.get("Department of Defense Activity Address Code")
        match = _DODAAC_CODE.search(dodaac) if dodaac else None
        if match:
            delta["buyer_dodaac"] = match.group(1)
    return delta


def admin_communications(inline: dict[str, str]) -> Delta:
    """Buyer contact lines. Flat fields keep the first value, the map the last."""
    delta: Delta = {}
    comms: dict[str, str] = {}
    for key, value in inline.items():
        kl = key.lower()
        if "buyer name" in kl or "buyer dept" in kl:
            delta.setdefault("buyer_name", value)
            comms["Buyer Name"] = value
        elif "electronic mail" in kl or "e-mail" in kl or ("email" in kl and "system" not in kl):
            delta.setdefault("buyer_email", value)
            comms["Email"] = value
        elif "telephone" in kl or "phone" in kl:
            delta.setdefault("buyer_phone", value)
            comms["Telephone"] = value
        elif "facsimile" in kl or "fax" in kl:
            delta.setdefault("buyer_fax", value)
            comms["Fax"] = value
    if comms:
        delta["admin_communications"] = comms
    return delta


def document_links(soup: BeautifulSoup) -> Delta:
    delta: Delta = {}
    for anchor in soup.find_all("a"):
        href = anchor.get("href")
        if not href:
            continue
        label = text(anchor).lower()
        if "additional document" in label:
            delta["documents_url"] = href
        elif "synopsis" in label:
            delta["synopsis_url"] = href
        elif "fbo" in label or "fedbizopps" in label:
            delta["fbo_document_url"] = href
    return delta
