"""Tests for the fingerprint ledger and its JSONL journal."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from noticeflow.errors import DuplicateFingerprint
from noticeflow.ledger.fingerprints import (
    LOCK_STRIPES,
    FingerprintAction,
    FingerprintLedger,
    FingerprintRecord,
    InMemoryFingerprintStore,
    JsonlFingerprintStore,
)


class TestFingerprintLedger:
    @pytest.mark.asyncio
    async def test_check_after_record(self, ledger):
        await ledger.record("tenant-a", "opp_1", "fp-1")
        result = await ledger.check("tenant-a", "fp-1")
        assert result.exists
        assert result.record_id == "opp_1"
        assert result.action == FingerprintAction.DELETED

    @pytest.mark.asyncio
    async def test_unknown_fingerprint(self, ledger):
        assert not (await ledger.check("tenant-a", "missing")).exists

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, ledger):
        await ledger.record("tenant-a", "opp_1", "fp-1")
        assert not (await ledger.check("tenant-b", "fp-1")).exists

    @pytest.mark.asyncio
    async def test_second_record_raises(self, ledger):
        await ledger.record("tenant-a", "opp_1", "fp-1")
        with pytest.raises(DuplicateFingerprint):
            await ledger.record("tenant-a", "opp_2", "fp-1")

    @pytest.mark.asyncio
    async def test_concurrent_record_has_one_winner(self, ledger):
        outcomes = await asyncio.gather(
            *(ledger.record("tenant-a", f"opp_{i}", "fp-race") for i in range(5)),
            return_exceptions=True,
        )
        assert sum(not isinstance(o, Exception) for o in outcomes) == 1
        assert sum(isinstance(o, DuplicateFingerprint) for o in outcomes) == 4

    @pytest.mark.asyncio
    async def test_check_many_answers_every_key(self, ledger):
        await ledger.record("tenant-a", "opp_1", "fp-1")
        results = await ledger.check_many("tenant-a", ["fp-1", "fp-2"])
        assert results["fp-1"].exists
        assert not results["fp-2"].exists

    @pytest.mark.asyncio
    async def test_check_reports_most_recent_legacy_row(self):
        store = InMemoryFingerprintStore()
        old = datetime.now(timezone.utc) - timedelta(days=3)
        await store.insert(FingerprintRecord(tenant_id="t", fingerprint="fp", record_id="old", recorded_at=old))
        await store.insert(FingerprintRecord(tenant_id="t", fingerprint="fp", record_id="new"))
        ledger = FingerprintLedger(store)
        assert (await ledger.check("t", "fp")).record_id == "new"
        assert (await ledger.check_many("t", ["fp"]))["fp"].record_id == "new"

    @pytest.mark.asyncio
    async def test_update_action_and_statistics(self, ledger):
        await ledger.record("tenant-a", "opp_1", "fp-1")
        await ledger.record("tenant-a", "opp_2", "fp-2")
        assert await ledger.update_action("tenant-a", "opp_2", FingerprintAction.HIDDEN) == 1
        stats = await ledger.get_statistics("tenant-a")
        assert stats == {"total": 2, "by_action": {"deleted": 1, "hidden": 1}}

    @pytest.mark.asyncio
    async def test_remove_reopens_key(self, ledger):
        await ledger.record("tenant-a", "opp_1", "fp-1")
        assert await ledger.remove("tenant-a", "opp_1") == 1
        await ledger.record("tenant-a", "opp_1b", "fp-1")

    @pytest.mark.asyncio
    async def test_release_undoes_claim(self, ledger):
        await ledger.record("tenant-a", "opp_1", "fp-1")
        assert await ledger.release("tenant-a", "opp_1") == 1
        assert not (await ledger.check("tenant-a", "fp-1")).exists

    @pytest.mark.asyncio
    async def test_lock_set_does_not_grow_with_keys(self, ledger):
        for i in range(LOCK_STRIPES * 3):
            await ledger.record("tenant-a", f"opp_{i}", f"fp-{i}")
        assert len(ledger._key_locks) == LOCK_STRIPES
        assert not any(lock.locked() for lock in ledger._key_locks)

    @pytest.mark.asyncio
    async def test_cleanup_older_than(self):
        store = InMemoryFingerprintStore()
        old = datetime.now(timezone.utc) - timedelta(days=400)
        await store.insert(FingerprintRecord(tenant_id="t", fingerprint="old", recorded_at=old))
        await store.insert(FingerprintRecord(tenant_id="t", fingerprint="new"))
        ledger = FingerprintLedger(store)
        assert await ledger.cleanup_older_than("t", 365) == 1
        assert (await ledger.check("t", "new")).exists


class TestJsonlFingerprintStore:
    @pytest.mark.asyncio
    async def test_replay_restores_rows(self, tmp_path):
        path = tmp_path / "ledger" / "fingerprints.jsonl"
        ledger = FingerprintLedger(JsonlFingerprintStore(path))
        await ledger.record("tenant-a", "opp_1", "fp-1")
        await ledger.record("tenant-a", "opp_2", "fp-2")
        await ledger.update_action("tenant-a", "opp_1", FingerprintAction.NOT_INTERESTED)
        await ledger.remove("tenant-a", "opp_2")

        reloaded = FingerprintLedger(JsonlFingerprintStore(path))
        first = await reloaded.check("tenant-a", "fp-1")
        assert first.exists
        assert first.action == FingerprintAction.NOT_INTERESTED
        assert not (await reloaded.check("tenant-a", "fp-2")).exists

    @pytest.mark.asyncio
    async def test_journal_is_append_only(self, tmp_path):
        path = tmp_path / "fingerprints.jsonl"
        ledger = FingerprintLedger(JsonlFingerprintStore(path))
        await ledger.record("tenant-a", "opp_1", "fp-1")
        await ledger.remove("tenant-a", "opp_1")
        assert len(path.read_text().strip().splitlines()) == 2
