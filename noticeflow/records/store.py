"""Record store collaborator for canonical opportunities."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Protocol

from noticeflow.errors import DuplicateFingerprint
from noticeflow.records.models import CanonicalOpportunity, OpportunityStatus

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    async def create(self, record: CanonicalOpportunity) -> CanonicalOpportunity: ...

    async def get(self, tenant_id: str, record_id: str) -> CanonicalOpportunity | None: ...

    async def update(self, tenant_id: str, record_id: str, changes: dict[str, Any]) -> CanonicalOpportunity: ...

    async def soft_delete(self, tenant_id: str, record_id: str) -> bool: ...

    async def find_by_message(
        self, tenant_id: str, email_message_id: str, solicitation_number: str | None
    ) -> CanonicalOpportunity | None: ...

    async def find_open_by_solicitation(self, tenant_id: str, solicitation_number: str) -> CanonicalOpportunity | None: ...

    async def find_children(self, tenant_id: str, parent_id: str) -> list[CanonicalOpportunity]: ...

    async def list_records(self, tenant_id: str, *, include_deleted: bool = False) -> list[CanonicalOpportunity]: ...

    async def count_by_scraping_status(self, tenant_id: str) -> dict[str, int]: ...


class InMemoryRecordStore:
    """Dict-backed record store.

    Enforces fingerprint uniqueness within (tenant, email message) and
    serializes creates so a lost race surfaces as ``DuplicateFingerprint``.
    """

    def __init__(self) -> None:
        self._records: dict[str, CanonicalOpportunity] = {}
        self._create_lock = asyncio.Lock()

    async def create(self, record: CanonicalOpportunity) -> CanonicalOpportunity:
        async with self._create_lock:
            for existing in self._records.values():
                if (
                    existing.tenant_id == record.tenant_id
                    and existing.email_message_id == record.email_message_id
                    and existing.fingerprint == record.fingerprint
                ):
                    raise DuplicateFingerprint(record.tenant_id, record.fingerprint)
            self._records[record.id] = record
        return record

    async def get(self, tenant_id: str, record_id: str) -> CanonicalOpportunity | None:
        record = self._records.get(record_id)
        if record is None or record.tenant_id != tenant_id:
            return None
        return record

    async def update(self, tenant_id: str, record_id: str, changes: dict[str, Any]) -> CanonicalOpportunity:
        record = await self.get(tenant_id, record_id)
        if record is None:
            raise KeyError(record_id)
        updated = record.model_copy(update=changes)
        self._records[record_id] = updated
        return updated

    async def soft_delete(self, tenant_id: str, record_id: str) -> bool:
        record = await self.get(tenant_id, record_id)
        if record is None or record.is_deleted:
            return False
        await self.update(tenant_id, record_id, {"deleted_at": datetime.now(timezone.utc)})
        return True

    async def find_by_message(
        self, tenant_id: str, email_message_id: str, solicitation_number: str | None
    ) -> CanonicalOpportunity | None:
        for record in self._live(tenant_id):
            if record.email_message_id != email_message_id or record.is_child:
                continue
            if solicitation_number and record.solicitation_number != solicitation_number:
                continue
            return record
        return None

    async def find_open_by_solicitation(self, tenant_id: str, solicitation_number: str) -> CanonicalOpportunity | None:
        for record in self._live(tenant_id):
            if record.solicitation_number == solicitation_number and record.status != OpportunityStatus.CANCELLED:
                return record
        return None

    async def find_children(self, tenant_id: str, parent_id: str) -> list[CanonicalOpportunity]:
        children = [r for r in self._live(tenant_id) if r.parent_id == parent_id]
        return sorted(children, key=lambda r: r.created_at)

    async def list_records(self, tenant_id: str, *, include_deleted: bool = False) -> list[CanonicalOpportunity]:
        if include_deleted:
            return [r for r in self._records.values() if r.tenant_id == tenant_id]
        return list(self._live(tenant_id))

    async def count_by_scraping_status(self, tenant_id: str) -> dict[str, int]:
        rows = [r for r in self._records.values() if r.tenant_id == tenant_id]
        return dict(Counter(r.scraping_status.value if r.scraping_status else "never_attempted" for r in rows))

    def _live(self, tenant_id: str):
        return (r for r in self._records.values() if r.tenant_id == tenant_id and not r.is_deleted)
