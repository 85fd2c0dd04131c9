"""Fingerprint Ledger: the (tenant, fingerprint) dedup memory.

A fingerprint is recorded once per tenant when a record is created and
outlives the record itself, so a deleted or hidden notice is never imported
again when the same email or page is observed later.

Contract:
- ``check`` reports the most recently created row when legacy data holds
  several rows for one key
- ``check_many`` answers every requested key after one bulk fetch
- ``record`` is check-then-create under a striped per-key lock and raises
  ``DuplicateFingerprint`` when the key already exists
- Rows are append-only apart from ``update_action``; ``remove`` and
  ``cleanup_older_than`` are maintenance operations

MUST NOT:
- Swallow ``DuplicateFingerprint``; the caller decides whether it is a no-op
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from noticeflow.errors import DuplicateFingerprint

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


class FingerprintAction(str, Enum):
    DELETED = "deleted"
    HIDDEN = "hidden"
    NOT_INTERESTED = "not_interested"


class FingerprintRecord(BaseModel):
    id: str = Field(default_factory=lambda: f"fp_{uuid.uuid4().hex[:16]}")
    tenant_id: str
    fingerprint: str
    action: FingerprintAction = FingerprintAction.DELETED
    record_id: str | None = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FingerprintCheckResult(BaseModel):
    exists: bool
    action: FingerprintAction | None = None
    recorded_at: datetime | None = None
    record_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_record(cls, record: FingerprintRecord) -> FingerprintCheckResult:
        return cls(exists=True, action=record.action, recorded_at=record.recorded_at, record_id=record.record_id)


NOT_FOUND = FingerprintCheckResult(exists=False)


class FingerprintStore(Protocol):
    """Persistence collaborator for fingerprint rows."""

    async def find(self, tenant_id: str, fingerprints: list[str]) -> list[FingerprintRecord]: ...

    async def insert(self, record: FingerprintRecord) -> None: ...

    async def set_action(self, tenant_id: str, record_id: str, action: FingerprintAction) -> int: ...

    async def delete_for_record(self, tenant_id: str, record_id: str) -> int: ...

    async def delete_older_than(self, tenant_id: str, cutoff: datetime) -> int: ...

    async def list_all(self, tenant_id: str) -> list[FingerprintRecord]: ...


class InMemoryFingerprintStore:
    """Dict-backed store. Keeps duplicate rows if they are loaded or inserted."""

    def __init__(self) -> None:
        self._rows: dict[str, list[FingerprintRecord]] = defaultdict(list)

    async def find(self, tenant_id: str, fingerprints: list[str]) -> list[FingerprintRecord]:
        wanted = set(fingerprints)
        return [row for row in self._rows[tenant_id] if row.fingerprint in wanted]

    async def insert(self, record: FingerprintRecord) -> None:
        self._rows[record.tenant_id].append(record)

    async def set_action(self, tenant_id: str, record_id: str, action: FingerprintAction) -> int:
        updated = 0
        for row in self._rows[tenant_id]:
            if row.record_id == record_id:
                row.action = action
                updated += 1
        return updated

    async def delete_for_record(self, tenant_id: str, record_id: str) -> int:
        return self._delete_where(tenant_id, lambda row: row.record_id == record_id)

    async def delete_older_than(self, tenant_id: str, cutoff: datetime) -> int:
        return self._delete_where(tenant_id, lambda row: row.recorded_at < cutoff)

    async def list_all(self, tenant_id: str) -> list[FingerprintRecord]:
        return list(self._rows[tenant_id])

    def _delete_where(self, tenant_id: str, predicate) -> int:
        before = len(self._rows[tenant_id])
        self._rows[tenant_id] = [row for row in self._rows[tenant_id] if not predicate(row)]
        return before - len(self._rows[tenant_id])


class _LedgerEvent(BaseModel):
    op: str
    record: FingerprintRecord | None = None
    tenant_id: str | None = None
    record_id: str | None = None
    action: FingerprintAction | None = None
    cutoff: datetime | None = None


class JsonlFingerprintStore(InMemoryFingerprintStore):
    """In-memory store journaled to an append-only JSONL file.

    Every mutation is appended as an event and replayed on startup, so the
    file itself is never rewritten.
    """

    def __init__(self, ledger_path: Path) -> None:
        super().__init__()
        self._ledger_path = ledger_path
        self._ledger_path.parent.mkdir(parents=True, exist_ok=True)
        self._replay()

    async def insert(self, record: FingerprintRecord) -> None:
        await super().insert(record)
        self._append(_LedgerEvent(op="insert", record=record))

    async def set_action(self, tenant_id: str, record_id: str, action: FingerprintAction) -> int:
        updated = await super().set_action(tenant_id, record_id, action)
        if updated:
            self._append(_LedgerEvent(op="set_action", tenant_id=tenant_id, record_id=record_id, action=action))
        return updated

    async def delete_for_record(self, tenant_id: str, record_id: str) -> int:
        removed = await super().delete_for_record(tenant_id, record_id)
        if removed:
            self._append(_LedgerEvent(op="delete_record", tenant_id=tenant_id, record_id=record_id))
        return removed

    async def delete_older_than(self, tenant_id: str, cutoff: datetime) -> int:
        removed = await super().delete_older_than(tenant_id, cutoff)
        if removed:
            self._append(_LedgerEvent(op="delete_older", tenant_id=tenant_id, cutoff=cutoff))
        return removed

    def _append(self, event: _LedgerEvent) -> None:
        with open(self._ledger_path, "a") as f:
            f.write(event.model_dump_json(exclude_none=True) + "\n")

    def _replay(self) -> None:
        if not self._ledger_path.exists():
            return
        with open(self._ledger_path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                event = _LedgerEvent.model_validate_json(line)
                if event.op == "insert" and event.record is not None:
                    self._rows[event.record.tenant_id].append(event.record)
                elif event.op == "set_action":
                    for row in self._rows[event.tenant_id]:
                        if row.record_id == event.record_id:
                            row.action = event.action
                elif event.op == "delete_record":
                    self._delete_where(event.tenant_id, lambda row: row.record_id == event.record_id)
                elif event.op == "delete_older":
                    self._delete_where(event.tenant_id, lambda row: row.recorded_at < event.cutoff)


class FingerprintLedger:
    """Service over a ``FingerprintStore`` with per-key check-then-create."""

    def __init__(self, store: FingerprintStore | None = None) -> None:
        self._store = store or InMemoryFingerprintStore()
        # Each (tenant, fingerprint) key hashes to one of LOCK_STRIPES locks.
        self._key_locks = tuple(asyncio.Lock() for _ in range(LOCK_STRIPES))

    @property
    def store(self) -> FingerprintStore:
        return self._store

    async def check(self, tenant_id: str, fingerprint: str) -> FingerprintCheckResult:
        rows = await self._store.find(tenant_id, [fingerprint])
        if not rows:
            return NOT_FOUND
        return FingerprintCheckResult.from_record(max(rows, key=lambda row: row.recorded_at))

    async def check_many(self, tenant_id: str, fingerprints: list[str]) -> dict[str, FingerprintCheckResult]:
        results = {fp: NOT_FOUND for fp in fingerprints}
        latest: dict[str, FingerprintRecord] = {}
        for row in await self._store.find(tenant_id, list(results)):
            current = latest.get(row.fingerprint)
            if current is None or row.recorded_at > current.recorded_at:
                latest[row.fingerprint] = row
        for fp, row in latest.items():
            results[fp] = FingerprintCheckResult.from_record(row)
        return results

    async def record(
        self,
        tenant_id: str,
        record_id: str | None,
        fingerprint: str,
        action: FingerprintAction = FingerprintAction.DELETED,
    ) -> FingerprintRecord:
        async with self._lock_for(tenant_id, fingerprint):
            if await self._store.find(tenant_id, [fingerprint]):
                raise DuplicateFingerprint(tenant_id, fingerprint)
            row = FingerprintRecord(tenant_id=tenant_id, fingerprint=fingerprint, action=action, record_id=record_id)
            await self._store.insert(row)
        logger.debug("Fingerprint recorded for %s: %s...", record_id, fingerprint[:16])
        return row

    async def release(self, tenant_id: str, record_id: str) -> int:
        """Undo ``record`` for a record that was never created."""
        removed = await self._store.delete_for_record(tenant_id, record_id)
        logger.debug("Fingerprint claim released for %s (%d rows)", record_id, removed)
        return removed

    def _lock_for(self, tenant_id: str, fingerprint: str) -> asyncio.Lock:
        return self._key_locks[hash((tenant_id, fingerprint)) % LOCK_STRIPES]

    async def update_action(self, tenant_id: str, record_id: str, action: FingerprintAction) -> int:
        updated = await self._store.set_action(tenant_id, record_id, action)
        logger.debug("Fingerprint action for %s set to %s (%d rows)", record_id, action.value, updated)
        return updated

    async def remove(self, tenant_id: str, record_id: str) -> int:
        """Delete the fingerprint rows of a record.

        Maintenance only: the notice can be imported again afterwards.
        """
        removed = await self._store.delete_for_record(tenant_id, record_id)
        logger.warning("Fingerprint rows removed for record %s (%d); duplicate window reopened", record_id, removed)
        return removed

    async def get_statistics(self, tenant_id: str) -> dict[str, object]:
        rows = await self._store.list_all(tenant_id)
        by_action = Counter(row.action.value for row in rows)
        return {"total": len(rows), "by_action": dict(by_action)}

    async def cleanup_older_than(self, tenant_id: str, older_than_days: int) -> int:
        """Drop rows older than the cutoff. Maintenance only, like ``remove``."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        removed = await self._store.delete_older_than(tenant_id, cutoff)
        logger.info(
            "Cleaned up %d fingerprints older than %d days for tenant %s", removed, older_than_days, tenant_id
        )
        return removed
