"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    FIELD_EXTRACTION_FAILED = "FIELD_EXTRACTION_FAILED"
    TABULAR_PATTERN_INVALID = "TABULAR_PATTERN_INVALID"
    FINGERPRINT_SOURCE_EMPTY = "FINGERPRINT_SOURCE_EMPTY"
    STRUCTURAL_SECTION_SKIPPED = "STRUCTURAL_SECTION_SKIPPED"
    SCRAPE_FAILED = "SCRAPE_FAILED"
    SCRAPE_PERSIST_FAILED = "SCRAPE_PERSIST_FAILED"
    CHILD_CREATION_FAILED = "CHILD_CREATION_FAILED"
    EMAIL_ITEM_FAILED = "EMAIL_ITEM_FAILED"
    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"
    FETCHER_CLEANUP_FAILED = "FETCHER_CLEANUP_FAILED"
    LANE_JOB_FAILED = "LANE_JOB_FAILED"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    tenant_id: str | None = None,
    record_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "noticeflow_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "tenant_id": tenant_id,
            "record_id": record_id,
            "details": details or {},
        },
    )


def configure_logging(level: str = "INFO") -> None:
    """Apply the process-wide log level (``NoticeflowConfig.log_level``)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
