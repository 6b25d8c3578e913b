"""
Call Orchestrator — the use cases behind each HTTP route.

  Place:   validate numbers → provider places call → tracker registers
           record + arms the no-answer guard
  Status:  provider status webhook → parse leniently → tracker folds
  Answer:  provider answer webhook → route on the AMD verdict:
             human / unknown / late machine verdicts → hand the call
                 to the Voiceflow agent behind the calling number
             machine_start / machine_end_beep → voicemail, hang up
             anything else → declined, hang up
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from channels.base import UpstreamError
from channels.telephony import twiml
from channels.telephony.factory import TelephonyClient
from channels.voiceflow import VoiceflowClient
from context.store import DuplicateCallError
from context.tracker import CallTracker
from models.schemas import AnsweredBy, CallRecord, SemanticStatus
from utils.phone import normalize_call_endpoints

logger = structlog.get_logger()

HANDOFF_ANSWERS = frozenset({
    AnsweredBy.HUMAN.value,
    AnsweredBy.UNKNOWN.value,
    AnsweredBy.MACHINE_END_SILENCE.value,
    AnsweredBy.MACHINE_END_OTHER.value,
})

VOICEMAIL_ANSWERS = frozenset({
    AnsweredBy.MACHINE_START.value,
    AnsweredBy.MACHINE_END_BEEP.value,
})

VOICE_SERVICE_ERROR = "Sorry, there was an error with the voice service."
PROCESSING_ERROR = "Sorry, there was an error processing your call."


class CallOrchestrator:
    """
    Wires the tracker to its collaborators.

    Usage:
        orchestrator = CallOrchestrator(tracker, telephony, voiceflow, server_url)
        result = await orchestrator.place_call("14155550100", "14155550199")
        markup = await orchestrator.answer_call(form)
    """

    def __init__(
        self,
        tracker: CallTracker,
        telephony: TelephonyClient,
        voiceflow: VoiceflowClient,
        server_url: str,
        ring_timeout: int = 45,
    ):
        self.tracker = tracker
        self.telephony = telephony
        self.voiceflow = voiceflow
        self.server_url = server_url.rstrip("/")
        self.ring_timeout = ring_timeout

    # ── Outbound placement ────────────────────────────────────

    async def place_call(self, to: Optional[str], from_: Optional[str]) -> dict[str, Any]:
        """
        Raises:
            ValidationError: either number is missing or malformed.
            UpstreamError: the provider refused or could not be reached.
        """
        to, from_ = normalize_call_endpoints(to, from_)

        try:
            handle = await self.telephony.place_call(
                to=to,
                from_=from_,
                answer_url=f"{self.server_url}/voice",
                status_callback_url=f"{self.server_url}/call-status",
                ring_timeout=self.ring_timeout,
            )
        except UpstreamError as e:
            logger.error("call_placement_failed", to=to, from_number=from_, error=str(e))
            raise

        try:
            self.tracker.register_call(handle.sid, handle.to, handle.from_, handle.status)
        except DuplicateCallError:
            # A status callback beat us here and synthesized the record.
            logger.warning("call_record_exists", call_sid=handle.sid)
            self.tracker.adopt_endpoints(handle.sid, handle.to, handle.from_)

        logger.info("call_placed", call_sid=handle.sid, to=handle.to, status=handle.status)
        return {
            "message": "Call initiated successfully",
            "callSid": handle.sid,
            "to": handle.to,
            "from": handle.from_,
            "status": handle.status,
            "statusUrl": f"{self.server_url}/status/{handle.sid}",
        }

    # ── Provider webhooks ─────────────────────────────────────

    def handle_status_webhook(self, form: dict[str, Any]) -> Optional[CallRecord]:
        callback = self.telephony.parse_status_webhook(form)
        logger.info("call_status_received",
                    call_sid=callback.call_sid,
                    status=callback.call_status,
                    sip_code=callback.sip_response_code,
                    answered_by=callback.answered_by)

        if not callback.call_sid:
            logger.warning("call_status_missing_sid", status=callback.call_status)
            return None
        return self.tracker.handle_status_callback(callback)

    async def answer_call(self, form: dict[str, Any]) -> str:
        """Decide what the answered call hears. Always returns TwiML."""
        call_sid = form.get("CallSid", "")
        answered_by = form.get("AnsweredBy") or ""
        logger.info("voice_webhook_received",
                    call_sid=call_sid,
                    answered_by=answered_by,
                    to=form.get("To"),
                    from_number=form.get("From"))

        try:
            if answered_by in HANDOFF_ANSWERS:
                return await self._hand_off(form)

            if answered_by in VOICEMAIL_ANSWERS:
                self._record(call_sid, SemanticStatus.MACHINE.value, "call answered by voicemail")
                return twiml.hangup_response()

            self._record(call_sid, SemanticStatus.DECLINED.value, "call was declined or not answered")
            return twiml.hangup_response()

        except UpstreamError as e:
            logger.error("voice_webhook_failed", call_sid=call_sid, error=str(e))
            self._record(call_sid, SemanticStatus.ERROR.value, str(e))
            return twiml.apology_response(PROCESSING_ERROR)
        except Exception as e:
            logger.exception("voice_webhook_crashed", call_sid=call_sid)
            self._record(call_sid, SemanticStatus.ERROR.value, str(e) or type(e).__name__)
            return twiml.apology_response(PROCESSING_ERROR)

    async def _hand_off(self, form: dict[str, Any]) -> str:
        # The calling number is ours; its voice URL points at the agent.
        number_config = await self.telephony.lookup_number_config(form.get("From", ""))
        target = self.voiceflow.resolve_webhook(number_config)
        logger.info("voiceflow_handoff", call_sid=form.get("CallSid"), webhook_id=target.webhook_id)

        markup = await self.voiceflow.fetch_call_control_markup(
            target.webhook_id,
            target.api_key,
            {
                "From": form.get("To", ""),
                "To": form.get("From", ""),
                "CallSid": form.get("CallSid", ""),
            },
        )
        if markup is None:
            return twiml.say_response(VOICE_SERVICE_ERROR)
        return markup

    def _record(self, call_sid: str, status: str, message: str) -> None:
        if not call_sid:
            logger.warning("voice_webhook_missing_sid", status=status)
            return
        self.tracker.record_outcome(call_sid, status, message)

    # ── Queries ───────────────────────────────────────────────

    def get_call(self, call_id: str) -> Optional[CallRecord]:
        return self.tracker.get_record(call_id)

    async def close(self) -> None:
        self.tracker.shutdown()
        await self.telephony.close()
        await self.voiceflow.close()
