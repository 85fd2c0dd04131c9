"""Shared fixtures: fake page fetcher, stores and NECO page markup."""

from __future__ import annotations

import pytest

from noticeflow.config.stores import TenantConfigRepository
from noticeflow.extraction.template import NECO_SCHEMA, NECO_TEMPLATE, ParsingTemplate, TemplateScrapingConfig
from noticeflow.fetch.fetcher import FetchResponse
from noticeflow.ledger.fingerprints import FingerprintLedger
from noticeflow.records.store import InMemoryRecordStore
from noticeflow.signals.emitter import SignalEmitter

NECO_URL = "https://neco.navy.mil/synopsis/detail.aspx?id=1"

NECO_TWO_ITEMS = """
<html><head><title>NECO Solicitation</title></head><body>
<table>
  <tr><td class="tbl_hdr_lg">Solicitation Information</td></tr>
  <tr><td class="tbl_hdr">Solicitation Number:</td><td class="tbl_itm">N0010424QK123</td></tr>
  <tr><td class="tbl_hdr">Contract Type:</td><td class="tbl_itm">Firm Fixed Price</td></tr>
  <tr><td class="tbl_itm_sm">Quotes must be received by:  Monday, March 16, 2099 2:00 pm EST</td></tr>
</table>
<table>
  <tr><td class="tbl_hdr_lg">Line Item</td></tr>
  <tr><td class="tbl_hdr">Line Item:</td><td class="tbl_itm_sm">0001</td></tr>
  <tr><td class="tbl_hdr">Quantity:</td><td class="tbl_itm_sm">5 Each</td></tr>
</table>
<table>
  <tr><td class="tbl_itm_sm">National Stock Number  5340-01-123-4567</td></tr>
  <tr><td class="tbl_itm_sm">Nomenclature  VALVE ASSEMBLY</td></tr>
  <tr><td class="tbl_itm_sm">Vendor's (Seller's) Part Number  K1234 PN-555</td></tr>
</table>
<table>
  <tr><td class="tbl_hdr_lg">Line Item</td></tr>
  <tr><td class="tbl_hdr">Line Item:</td><td class="tbl_itm_sm">0002</td></tr>
  <tr><td class="tbl_hdr">Quantity:</td><td class="tbl_itm_sm">2 Each</td></tr>
</table>
<table>
  <tr><td class="tbl_itm_sm">National Stock Number  4730-00-987-6543</td></tr>
  <tr><td class="tbl_itm_sm">Nomenclature  ELBOW, TUBE</td></tr>
  <tr><td class="tbl_itm_sm">Vendor's (Seller's) Part Number  0ABC1 EL-77</td></tr>
</table>
</body></html>
"""

NECO_CANCELLED = """
<html><head><title>NECO Solicitation</title></head><body>
<table>
  <tr><td class="tbl_hdr_lg">Solicitation Information</td></tr>
  <tr><td class="tbl_hdr">Solicitation Number:</td><td class="tbl_itm">N0010424QK123</td></tr>
  <tr><td class="tbl_itm_sm">Transaction Purpose  Cancellation</td></tr>
</table>
</body></html>
"""

ERROR_PAGE = """
<html><head><title>Error Page</title></head>
<body><p>An Error Has Occured. Please try again later.</p></body></html>
"""


class FakeFetcher:
    """Replays the given outcomes in order; the last one repeats forever.

    An outcome is a ``FetchResponse``, an exception to raise, or an HTML
    string served with status 200.
    """

    def __init__(self, *outcomes) -> None:
        self._outcomes = list(outcomes) or [NECO_TWO_ITEMS]
        self.calls: list[dict] = []

    async def fetch(self, url, *, timeout_ms, headers=None):
        self.calls.append({"url": url, "timeout_ms": timeout_ms, "headers": headers})
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return FetchResponse(status_code=200, html=outcome, url=url)
        return outcome


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def records():
    return InMemoryRecordStore()


@pytest.fixture
def ledger():
    return FingerprintLedger()


@pytest.fixture
def signals():
    return SignalEmitter()


@pytest.fixture
def tenant_config():
    return TenantConfigRepository()


@pytest.fixture
def neco_template():
    return ParsingTemplate(
        id="tpl_neco",
        tenant_id="tenant-a",
        name="NECO solicitations",
        sender_filter="neco.navy.mil",
        extraction=NECO_TEMPLATE,
        output=NECO_SCHEMA,
        scraping=TemplateScrapingConfig(enabled=True),
    )


@pytest.fixture
def neco_url():
    return NECO_URL


@pytest.fixture
def two_item_page():
    return NECO_TWO_ITEMS


@pytest.fixture
def cancelled_page():
    return NECO_CANCELLED


@pytest.fixture
def error_page():
    return ERROR_PAGE
