"""
CallRecordStore — Dict-backed store of call records and their event logs.

Features:
  - Zero dependencies (no database, no Redis)
  - Single logical owner: mutated only from the event loop thread
  - Every mutation is visible to the next get() (no caching layer)
  - All data lost on process restart
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Optional

from models.schemas import CallEvent, CallRecord

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DuplicateCallError(Exception):
    """A record already exists for this call identifier."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Call record already exists: {call_id}")


class CallRecordStore:
    """
    Owns call_id → CallRecord.

    Records are never reordered or truncated; the only way events leave
    the store is delete() of the whole record.
    """

    def __init__(self):
        self._records: dict[str, CallRecord] = {}

    def create_record(
        self, call_id: str, to: str, from_: str, initial_status: str,
    ) -> CallRecord:
        if call_id in self._records:
            raise DuplicateCallError(call_id)

        now = _utcnow()
        record = CallRecord(
            call_id=call_id,
            to=to,
            from_=from_,
            status=initial_status,
            last_updated=now,
            events=[CallEvent(status=initial_status, timestamp=now)],
        )
        self._records[call_id] = record
        logger.info("call_record_created", call_id=call_id, status=initial_status)
        return record

    def fold_event(
        self,
        call_id: str,
        status: str,
        message: str,
        duration: Optional[int] = None,
        answered_by: Optional[str] = None,
        sip_code: Optional[str] = None,
    ) -> CallRecord:
        """
        Append an event and make it the current status (last write wins).

        Synthesizes a bare record if none exists: a callback can race the
        placement path, or land after the record was retired.
        """
        record = self._records.get(call_id)
        if record is None:
            logger.info("call_record_synthesized", call_id=call_id, status=status)
            record = CallRecord(call_id=call_id, status=status)
            self._records[call_id] = record

        event = CallEvent(
            status=status,
            message=message,
            duration=duration,
            answered_by=answered_by,
            sip_code=sip_code,
        )
        record.status = status
        record.last_updated = event.timestamp
        record.events.append(event)
        return record

    def adopt_endpoints(self, call_id: str, to: str, from_: str) -> Optional[CallRecord]:
        """Set `to`/`from` where still blank. Existing endpoints are never overwritten."""
        record = self._records.get(call_id)
        if record is None:
            return None
        if not record.to:
            record.to = to
        if not record.from_:
            record.from_ = from_
        return record

    def get(self, call_id: str) -> Optional[CallRecord]:
        return self._records.get(call_id)

    def delete(self, call_id: str) -> None:
        if self._records.pop(call_id, None) is not None:
            logger.info("call_record_deleted", call_id=call_id)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._records

    def __len__(self) -> int:
        return len(self._records)
