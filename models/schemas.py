"""
Core data models for the call status tracker.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class RawCallStatus(str, Enum):
    """Lifecycle status exactly as the provider reports it."""
    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    FAILED = "failed"
    CANCELED = "canceled"


class SemanticStatus(str, Enum):
    """Normalized outcomes exposed to API consumers.

    Non-terminal raw statuses pass through unchanged, so a record's
    status is not limited to these values.
    """
    COMPLETED = "completed"
    DECLINED = "declined"
    MACHINE = "machine"
    FAILED = "failed"
    ERROR = "error"
    NO_ANSWER = "no-answer"      # written only by the timeout path


class AnsweredBy(str, Enum):
    HUMAN = "human"
    UNKNOWN = "unknown"
    MACHINE_START = "machine_start"
    MACHINE_END_BEEP = "machine_end_beep"
    MACHINE_END_SILENCE = "machine_end_silence"
    MACHINE_END_OTHER = "machine_end_other"
    FAX = "fax"


TERMINAL_RAW_STATUSES = frozenset({
    RawCallStatus.COMPLETED.value,
    RawCallStatus.FAILED.value,
    RawCallStatus.BUSY.value,
    RawCallStatus.NO_ANSWER.value,
    RawCallStatus.CANCELED.value,
})


# ──────────────────────────────────────────────────────────────
#  Call record: one per provider call identifier
# ──────────────────────────────────────────────────────────────

class CallEvent(BaseModel):
    """A single folded status change, kept in arrival order."""
    model_config = ConfigDict(populate_by_name=True)

    status: str
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    duration: Optional[int] = None
    answered_by: Optional[str] = Field(default=None, alias="answeredBy")
    sip_code: Optional[str] = Field(default=None, alias="sipCode")


class CallRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(alias="callId")
    to: str = ""
    from_: str = Field(default="", alias="from")
    status: str
    last_updated: datetime = Field(default_factory=_utcnow, alias="lastUpdated")
    events: list[CallEvent] = []

    def to_api(self) -> dict[str, Any]:
        """JSON shape served by GET /status/{callId}."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ──────────────────────────────────────────────────────────────
#  Collaborator payloads
# ──────────────────────────────────────────────────────────────

class CallHandle(BaseModel):
    """What the provider returns after placing a call."""
    sid: str
    to: str
    from_: str
    status: str


class NumberConfig(BaseModel):
    """Provider-side configuration of one of our phone numbers."""
    phone_number: str
    voice_url: Optional[str] = None
    sid: str = ""


class WebhookTarget(BaseModel):
    webhook_id: str
    api_key: Optional[str] = None


class StatusCallback(BaseModel):
    """A provider status webhook, parsed leniently."""
    call_sid: str = ""
    call_status: str = ""
    sip_response_code: Optional[str] = None
    call_duration: Optional[int] = None
    answered_by: Optional[str] = None
    received_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.call_status in TERMINAL_RAW_STATUSES
