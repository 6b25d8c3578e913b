"""
Status Normalizer — Maps raw provider lifecycle events to semantic outcomes.

The provider reports the same real-world outcome in several ways: a call
the callee rejected can arrive as `busy`, as `no-answer`, as `failed` with a
SIP 486/603, or as `completed` with zero duration. This module folds those
signals into the small vocabulary API consumers care about:

    completed | declined | machine | failed | <raw passthrough>

Decision table for `completed` / `failed` (first match wins):

    duration > 2                                  → completed
    SIP 487/486/480/603, or duration 0 + no AMD   → declined
    AMD machine_end_*                             → machine
    raw == failed                                 → failed
    otherwise                                     → completed
"""
from __future__ import annotations

from datetime import datetime
from typing import NamedTuple, Optional

from models.schemas import AnsweredBy, RawCallStatus, SemanticStatus


class NormalizedStatus(NamedTuple):
    status: str
    message: str


# 487 request terminated, 486 busy here, 480 temporarily unavailable, 603 decline
DECLINED_SIP_CODES = frozenset({"487", "486", "480", "603"})

MACHINE_ANSWERS = frozenset({
    AnsweredBy.MACHINE_END_BEEP.value,
    AnsweredBy.MACHINE_END_SILENCE.value,
    AnsweredBy.MACHINE_END_OTHER.value,
})

# Seconds of talk time above which the call counts as a real conversation.
CONVERSATION_MIN_SECONDS = 2

_SIMPLE_OUTCOMES: dict[str, NormalizedStatus] = {
    RawCallStatus.BUSY.value: NormalizedStatus(SemanticStatus.DECLINED.value, "line was busy"),
    RawCallStatus.NO_ANSWER.value: NormalizedStatus(SemanticStatus.DECLINED.value, "call was not answered"),
    RawCallStatus.CANCELED.value: NormalizedStatus(SemanticStatus.DECLINED.value, "call was canceled"),
}

_COMPLETED = NormalizedStatus(SemanticStatus.COMPLETED.value, "call completed")
_DECLINED = NormalizedStatus(SemanticStatus.DECLINED.value, "call was declined")
_MACHINE = NormalizedStatus(SemanticStatus.MACHINE.value, "call answered by voicemail")
_FAILED = NormalizedStatus(SemanticStatus.FAILED.value, "call failed")


def normalize(
    raw_status: str,
    sip_code: Optional[str] = None,
    duration_seconds: Optional[int] = None,
    answered_by: Optional[str] = None,
    ring_timestamp: Optional[datetime] = None,
    in_progress_timestamp: Optional[datetime] = None,
) -> NormalizedStatus:
    """
    Normalize one raw status event. Pure and total.

    Args:
        raw_status: CallStatus as sent by the provider.
        sip_code: SipResponseCode, if any (string or int).
        duration_seconds: CallDuration; None is treated as 0.
        answered_by: AMD outcome, if any.
        ring_timestamp / in_progress_timestamp: accepted for diagnostics only,
            they never change the outcome.
    """
    if raw_status in (RawCallStatus.COMPLETED.value, RawCallStatus.FAILED.value):
        return _normalize_final(raw_status, sip_code, duration_seconds, answered_by)

    simple = _SIMPLE_OUTCOMES.get(raw_status)
    if simple is not None:
        return simple

    return NormalizedStatus(raw_status, raw_status)


def _normalize_final(
    raw_status: str,
    sip_code: Optional[str],
    duration_seconds: Optional[int],
    answered_by: Optional[str],
) -> NormalizedStatus:
    duration = duration_seconds or 0
    sip = str(sip_code) if sip_code not in (None, "") else None

    if duration > CONVERSATION_MIN_SECONDS:
        return _COMPLETED

    if sip in DECLINED_SIP_CODES or (duration == 0 and not answered_by):
        return _DECLINED

    if answered_by in MACHINE_ANSWERS:
        return _MACHINE

    if raw_status == RawCallStatus.FAILED.value:
        return _FAILED

    return _COMPLETED


def elapsed_seconds(start: Optional[datetime], end: datetime) -> Optional[float]:
    """Seconds between two observed timestamps, or None if start was never seen."""
    if start is None:
        return None
    return (end - start).total_seconds()
