"""Content fingerprints: the natural dedup key of an extracted item."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

from noticeflow.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _fingerprint_part(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat().lower()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower()


def generate_fingerprint(
    data: Mapping[str, Any],
    fingerprint_fields: Iterable[str],
    fallback_text: str | None = None,
) -> str:
    """SHA-256 of the ``|``-joined lower-trimmed fingerprint field values.

    Fields that are absent or blank are dropped before joining, so two items
    that differ only in other fields always share a fingerprint. When every
    field is blank the raw fragment is hashed instead.
    """
    fields = list(fingerprint_fields)
    joined = "|".join(part for part in (_fingerprint_part(data.get(f)) for f in fields) if part)
    if joined:
        return sha256_hex(joined)

    fallback = (fallback_text or "").strip()
    if fallback:
        logger.warning("All fingerprint fields are empty %s; hashing raw text", fields)
        return sha256_hex(fallback)

    emit_structured_error(
        logger,
        code=ErrorCode.FINGERPRINT_SOURCE_EMPTY,
        message="No fingerprint field values and no raw text; hashing empty string",
        suppressed=True,
        details={"fingerprint_fields": fields},
    )
    return sha256_hex("")


def child_fingerprint(
    parent_solicitation: str | None,
    line_item: str,
    nsn: str | None,
    vendor_code: str | None,
    vendor_part_number: str | None,
) -> str:
    """Deterministic key for a child split from a multi-line-item document."""
    parts = [parent_solicitation or "", line_item or "", nsn or "", vendor_code or "", vendor_part_number or ""]
    return sha256_hex("|".join(parts))
