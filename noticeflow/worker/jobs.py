"""Work items delivered by the queue and the results handlers hand back."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from noticeflow.fetch.orchestrator import ScrapeResult


def _job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


class FetchJob(BaseModel):
    """Fetch the source page of one record."""

    id: str = Field(default_factory=_job_id)
    tenant_id: str
    record_id: str
    template_id: str | None = None
    source_url: str
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class ParseEmailJob(BaseModel):
    """Parse one email body with one template.

    Without ``template_id`` the first active template whose sender and
    subject filters accept the message is used.
    """

    id: str = Field(default_factory=_job_id)
    tenant_id: str
    template_id: str | None = None
    email_message_id: str
    email_thread_id: str | None = None
    email_account_id: str | None = None
    email_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sender: str = ""
    subject: str = ""
    body: str

    model_config = {"frozen": True}


class JobOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass
class FetchJobResult:
    job_id: str
    outcome: JobOutcome
    scrape: ScrapeResult | None = None
    children_created: int = 0
    detail: str | None = None


@dataclass(frozen=True)
class HaltTenant:
    """Returned by a fetch handler when the tenant's lane must stop and drain."""

    tenant_id: str
    reason: str
    record_id: str | None = None


@dataclass
class ProcessingResult:
    success: bool = True
    created: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: int = 0
    cancellations_detected: int = 0
    record_ids: list[str] = field(default_factory=list)
    fetch_job_ids: list[str] = field(default_factory=list)
