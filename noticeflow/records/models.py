"""Canonical opportunity record and its status vocabularies."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ScrapingStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"
    TIMEOUT = "timeout"
    ERROR_PAGE = "error_page"
    REQUIRES_AUTH = "requires_auth"
    DISABLED = "disabled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


FAILED_SCRAPING_STATUSES = frozenset(
    {ScrapingStatus.FAILED, ScrapingStatus.BLOCKED, ScrapingStatus.TIMEOUT, ScrapingStatus.ERROR_PAGE}
)


class OpportunityStatus(str, Enum):
    """Workflow status of an opportunity."""

    NOT_ANALYZED = "not_analyzed"
    ANALYZED = "analyzed"
    QUOTING = "quoting"
    BID_SUBMITTED = "bid_submitted"
    BID_WON = "bid_won"
    BID_LOST = "bid_lost"
    CANCELLED = "cancelled"
    DISCARDED = "discarded"


class StatusHistoryEntry(BaseModel):
    from_status: OpportunityStatus
    to_status: OpportunityStatus
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    by: str = "system"
    reason: str = ""


class CanonicalOpportunity(BaseModel):
    """A procurement opportunity as stored by the record store.

    A record with ``parent_id`` set is a child split from a multi-line-item
    document; children are never split further.
    """

    id: str = Field(default_factory=lambda: f"opp_{uuid.uuid4().hex[:16]}")
    tenant_id: str
    template_id: str | None = None
    email_account_id: str | None = None
    email_message_id: str | None = None
    email_thread_id: str | None = None
    email_date: datetime | None = None
    fingerprint: str

    parent_id: str | None = None
    children_count: int = 0

    solicitation_number: str | None = None
    site: str | None = None
    source_url: str | None = None
    closing_date: datetime | None = None
    delivery_date: datetime | None = None
    nsn: str | None = None
    part_number: str | None = None
    manufacturer: str | None = None
    description: str | None = None
    quantity: float | None = None
    unit: str | None = None
    condition: str | None = None

    status: OpportunityStatus = OpportunityStatus.NOT_ANALYZED
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    cancelled_at: datetime | None = None
    cancellation_source: str | None = None

    scraping_status: ScrapingStatus | None = None
    scraping_error: str | None = None
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    scraped_data: dict[str, Any] | None = None
    raw_html: str | None = None
    scraped_at: datetime | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_at: datetime | None = None

    @property
    def is_child(self) -> bool:
        return self.parent_id is not None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Closing date before the start of today (UTC)."""
        if self.closing_date is None:
            return False
        now = now or datetime.now(timezone.utc)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        closing = self.closing_date
        if closing.tzinfo is None:
            closing = closing.replace(tzinfo=timezone.utc)
        return closing < today

    def cancel(self, source: str, reason: str) -> None:
        self.status_history.append(
            StatusHistoryEntry(from_status=self.status, to_status=OpportunityStatus.CANCELLED, reason=reason)
        )
        self.status = OpportunityStatus.CANCELLED
        self.cancelled_at = datetime.now(timezone.utc)
        self.cancellation_source = source
