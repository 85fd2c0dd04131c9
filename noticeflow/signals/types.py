"""Signal type definitions for pipeline notifications."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted by the pipeline."""

    PHASE_TRANSITION = "PHASE_TRANSITION"
    RETRY_ATTEMPT = "RETRY_ATTEMPT"
    SCRAPE_COMPLETE = "SCRAPE_COMPLETE"
    SCRAPING_ERROR = "SCRAPING_ERROR"
    CANCELLATION_DETECTED = "CANCELLATION_DETECTED"
    CHILDREN_CREATED = "CHILDREN_CREATED"
    TENANT_HALTED = "TENANT_HALTED"


class Signal(BaseModel):
    """An immutable notification for the downstream alerting collaborator.

    ``label`` is a short status label; rendering user-facing text is left to
    subscribers.
    """

    sequence: int = Field(description="Monotonic sequence number within the emitter")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tenant_id: str
    record_id: str | None = None
    label: str = ""
    status: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
