"""Signal emitter for pipeline notifications.

Handles emission, persistence, and fan-out of Signals to the alerting
collaborator. Formatting of user-facing messages is not done here.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from noticeflow.signals.types import Signal, SignalType
from noticeflow.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

SCRAPING_STATUS_LABELS: dict[str, str] = {
    "error_page": "Error page",
    "timeout": "Timeout",
    "blocked": "Blocked",
    "failed": "Failed",
    "requires_auth": "Requires auth",
}


class SignalEmitter:
    """Emits, persists, and broadcasts signals.

    Signals are:
    - Immutable once emitted
    - Assigned monotonic sequence numbers
    - Persisted to a JSONL ledger in append-only mode when a path is given
    - Delivered to subscribers; a failing subscriber never breaks emission
    """

    def __init__(self, ledger_path: Path | None = None) -> None:
        self._sequence = 0
        self._ledger_path = ledger_path
        self._subscribers: list[Callable[[Signal], Any]] = []
        self._signals: list[Signal] = []
        self._lock = asyncio.Lock()

        if self._ledger_path:
            self._ledger_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def signals(self) -> list[Signal]:
        """Return all emitted signals (read-only copy)."""
        return list(self._signals)

    def subscribe(self, callback: Callable[[Signal], Any]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Signal], Any]) -> None:
        self._subscribers = [s for s in self._subscribers if s is not callback]

    async def emit(
        self,
        signal_type: SignalType,
        tenant_id: str,
        *,
        record_id: str | None = None,
        label: str = "",
        status: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Signal:
        """Emit a signal. This is the only way to create signals."""
        async with self._lock:
            self._sequence += 1
            signal = Signal(
                sequence=self._sequence,
                signal_type=signal_type,
                timestamp=datetime.now(timezone.utc),
                tenant_id=tenant_id,
                record_id=record_id,
                label=label,
                status=status,
                payload=payload or {},
            )
            self._signals.append(signal)

        if self._ledger_path:
            self._persist(signal)

        await self._broadcast(signal)
        return signal

    def _persist(self, signal: Signal) -> None:
        with open(self._ledger_path, "a") as f:
            f.write(signal.model_dump_json() + "\n")

    async def _broadcast(self, signal: Signal) -> None:
        for subscriber in self._subscribers:
            try:
                result = subscriber(signal)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.SIGNAL_SUBSCRIBER_FAILURE,
                    message=str(exc),
                    suppressed=True,
                    tenant_id=signal.tenant_id,
                    record_id=signal.record_id,
                    details={"signal_type": signal.signal_type.value},
                )

    async def emit_scraping_error(
        self, tenant_id: str, record_id: str, status: str, error: str, url: str, solicitation: str | None
    ) -> Signal:
        """Convenience: emit a SCRAPING_ERROR signal."""
        label = f"Scraping {SCRAPING_STATUS_LABELS.get(status, status)}: {solicitation or record_id[:8]}"
        return await self.emit(
            SignalType.SCRAPING_ERROR,
            tenant_id,
            record_id=record_id,
            label=label,
            status=status,
            payload={"url": url, "error": error},
        )

    async def emit_cancellation(
        self, tenant_id: str, record_id: str, solicitation: str | None, previous_status: str, source: str
    ) -> Signal:
        """Convenience: emit a CANCELLATION_DETECTED signal."""
        return await self.emit(
            SignalType.CANCELLATION_DETECTED,
            tenant_id,
            record_id=record_id,
            label=f"CANCELLED: {solicitation or record_id}",
            status="cancelled",
            payload={"detected_by": source, "previous_status": previous_status},
        )

    @staticmethod
    def load_ledger(ledger_path: Path) -> list[Signal]:
        """Load all signals from a JSONL ledger file."""
        signals = []
        if ledger_path.exists():
            with open(ledger_path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        signals.append(Signal.model_validate_json(line))
        return signals
