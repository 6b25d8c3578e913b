"""
Call Tracker — Single owner of all per-call lifecycle state.

Pipeline for every inbound provider status callback:

    disarm timeout → stamp raw status → normalize → fold into record
        → (terminal raw status) drop tracking state + schedule retention

State owned here, all keyed by the provider's call SID:
  - CallRecordStore      records + append-only event logs
  - _tracking            CallTrackingState (first-seen raw status timestamps)
  - TimeoutScheduler     one pending no-answer guard per placed call
  - RetentionSweeper     deferred record deletion after a terminal event

Concurrency contract: every method must be called from the event loop
thread. Handlers are non-preemptible, so no locks are taken; callbacks
may still arrive out of order or duplicated and each is folded as
authoritative at the time it arrives.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from context.normalizer import elapsed_seconds, normalize
from context.store import CallRecordStore
from context.timers import RetentionSweeper, TimeoutScheduler
from models.schemas import (
    CallRecord, RawCallStatus, SemanticStatus, StatusCallback,
)

logger = structlog.get_logger()

TIMEOUT_MESSAGE = "call was not answered (timeout)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CallTrackingState:
    """Transient state for a call that has not reached a terminal status."""
    raw_timestamps: dict[str, datetime] = field(default_factory=dict)

    def observe(self, raw_status: str, at: datetime) -> None:
        self.raw_timestamps.setdefault(raw_status, at)

    @property
    def ringing_at(self) -> Optional[datetime]:
        return self.raw_timestamps.get(RawCallStatus.RINGING.value)

    @property
    def in_progress_at(self) -> Optional[datetime]:
        return self.raw_timestamps.get(RawCallStatus.IN_PROGRESS.value)


class CallTracker:
    """
    Usage:
        tracker = CallTracker(call_timeout_seconds=45, retention_seconds=3600)
        tracker.register_call(handle.sid, handle.to, handle.from_, handle.status)
        tracker.handle_status_callback(TwilioClient.parse_status_webhook(form))
        record = tracker.get_record(call_sid)
    """

    def __init__(
        self,
        call_timeout_seconds: float = 45,
        retention_seconds: float = RetentionSweeper.DEFAULT_RETENTION_SECONDS,
        store: Optional[CallRecordStore] = None,
    ):
        self.call_timeout_seconds = call_timeout_seconds
        self._store = store or CallRecordStore()
        self._tracking: dict[str, CallTrackingState] = {}
        self._timeouts = TimeoutScheduler()
        self._retention = RetentionSweeper(self._store.delete, retention_seconds)

    # ── Placement ─────────────────────────────────────────────

    def register_call(self, call_id: str, to: str, from_: str, initial_status: str) -> CallRecord:
        """Create the record for a freshly placed call and arm its no-answer guard.

        Raises DuplicateCallError if the call is already tracked.
        """
        record = self._store.create_record(call_id, to, from_, initial_status)
        self._timeouts.arm(call_id, self.call_timeout_seconds, self.expire)
        return record

    # ── Provider callbacks ────────────────────────────────────

    def handle_status_callback(self, callback: StatusCallback) -> CallRecord:
        call_id = callback.call_sid
        raw_status = callback.call_status

        # Any callback, terminal or not, ends the no-answer guard.
        self._timeouts.disarm(call_id)

        state = self._tracking.setdefault(call_id, CallTrackingState())
        state.observe(raw_status, callback.received_at)

        normalized = normalize(
            raw_status,
            sip_code=callback.sip_response_code,
            duration_seconds=callback.call_duration,
            answered_by=callback.answered_by,
            ring_timestamp=state.ringing_at,
            in_progress_timestamp=state.in_progress_at,
        )

        logger.info(
            "call_status_folded",
            call_id=call_id,
            raw_status=raw_status,
            status=normalized.status,
            since_ringing_s=elapsed_seconds(state.ringing_at, callback.received_at),
            since_answer_s=elapsed_seconds(state.in_progress_at, callback.received_at),
        )

        record = self._store.fold_event(
            call_id,
            normalized.status,
            normalized.message,
            duration=callback.call_duration,
            answered_by=callback.answered_by,
            sip_code=callback.sip_response_code,
        )

        if callback.is_terminal:
            self._finish(call_id)
        return record

    def adopt_endpoints(self, call_id: str, to: str, from_: str) -> Optional[CallRecord]:
        """Fill endpoints on a record a callback created before placement returned."""
        return self._store.adopt_endpoints(call_id, to, from_)

    def record_outcome(self, call_id: str, status: str, message: str) -> CallRecord:
        """Fold an outcome decided outside the status callback path (answer webhook)."""
        logger.info("call_outcome_recorded", call_id=call_id, status=status)
        return self._store.fold_event(call_id, status, message)

    # ── Timer callbacks ───────────────────────────────────────

    def expire(self, call_id: str) -> None:
        """No callback arrived within the call timeout.

        Writes `no-answer` directly; the normalizer would map a
        provider-reported no-answer to `declined`.
        """
        self._store.fold_event(call_id, SemanticStatus.NO_ANSWER.value, TIMEOUT_MESSAGE)
        self._finish(call_id)

    def _finish(self, call_id: str) -> None:
        self._tracking.pop(call_id, None)
        self._retention.schedule_deletion(call_id)

    # ── Queries ───────────────────────────────────────────────

    def get_record(self, call_id: str) -> Optional[CallRecord]:
        """Read-only lookup; never creates a record."""
        return self._store.get(call_id)

    def is_tracking(self, call_id: str) -> bool:
        return call_id in self._tracking

    def has_pending_timeout(self, call_id: str) -> bool:
        return self._timeouts.is_armed(call_id)

    def stats(self) -> dict[str, int]:
        return {
            "records": len(self._store),
            "tracking": len(self._tracking),
            "pending_timeouts": len(self._timeouts),
            "pending_retention": len(self._retention),
        }

    def shutdown(self) -> None:
        self._timeouts.cancel_all()
        self._retention.cancel_all()
        logger.info("call_tracker_stopped")
