"""Exception taxonomy for the Noticeflow pipeline.

Only ``DuplicateFingerprint`` and ``TemplateValidationError`` are meant to
reach callers. The other errors are raised and translated inside the
component that owns them:

- ExtractionError: recovered per field with the rule default
- StructuralParseAnomaly: recovered by skipping the section
- TransportError / PolicyViolation: translated into a scraping status
"""

from __future__ import annotations

from enum import Enum


class NoticeflowError(Exception):
    """Base class for all pipeline errors."""


class ExtractionError(NoticeflowError):
    """A field pattern or transform failed on a text fragment."""


class StructuralParseAnomaly(NoticeflowError):
    """A document section was missing or garbled."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


class TransportErrorKind(str, Enum):
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"
    ERROR_PAGE = "error_page"
    GENERIC = "generic"


class TransportError(NoticeflowError):
    """A fetch failed at the transport or classification layer."""

    def __init__(self, kind: TransportErrorKind, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in (TransportErrorKind.TIMEOUT, TransportErrorKind.GENERIC)


class PolicyViolation(NoticeflowError):
    """The domain policy forbids fetching (disabled or auth-required)."""

    def __init__(self, domain: str, reason: str, requires_auth: bool = False) -> None:
        super().__init__(reason)
        self.domain = domain
        self.reason = reason
        self.requires_auth = requires_auth


class DuplicateFingerprint(NoticeflowError):
    """A (tenant, fingerprint) key already exists."""

    def __init__(self, tenant_id: str, fingerprint: str) -> None:
        super().__init__(f"Fingerprint {fingerprint[:12]}... already recorded for tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.fingerprint = fingerprint


class TemplateValidationError(NoticeflowError):
    """An extraction template or output schema is not acceptable."""
