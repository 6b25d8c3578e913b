"""
Twilio Telephony Client — places outbound calls and reads number config.

Call flow:
1. place_call() → Twilio dials the callee via PSTN
2. On answer (or AMD verdict), Twilio fetches TwiML from {server_url}/voice
3. Status webhooks arrive at {server_url}/call-status
4. parse_status_webhook() turns each form post into a StatusCallback

API Docs: https://www.twilio.com/docs/voice/api
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from channels.base import UpstreamError, is_retryable
from models.schemas import CallHandle, NumberConfig, StatusCallback

logger = structlog.get_logger()

STATUS_CALLBACK_EVENTS = [
    "initiated", "ringing", "answered", "completed",
    "no-answer", "busy", "failed", "canceled",
]


def _parse_int(value: Any) -> Optional[int]:
    """Lenient integer parse for webhook fields: junk becomes None."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class TwilioClient:
    """Twilio REST API client for voice call management."""

    BASE_URL = "https://api.twilio.com/2010-04-01/Accounts"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.base_url = f"{self.BASE_URL}/{account_sid}"
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                auth=(self.account_sid, self.auth_token),
                timeout=httpx.Timeout(30.0, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        client = await self._get_client()
        url = f"{self.base_url}{path}.json"
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("twilio_transport_error", path=path, error=str(e))
            raise UpstreamError(f"Twilio request failed: {e}", "twilio", retryable=True) from e

        if resp.status_code >= 400:
            logger.error(
                "twilio_api_error",
                status=resp.status_code,
                body=resp.text[:500],
                path=path,
            )
            raise UpstreamError(
                _error_message(resp),
                "twilio",
                status_code=resp.status_code,
                retryable=resp.status_code >= 500 or resp.status_code == 429,
            )
        try:
            return resp.json()
        except ValueError as e:
            logger.error("twilio_unreadable_response", status=resp.status_code, body=resp.text[:500], path=path)
            raise UpstreamError(
                f"Twilio returned an unreadable response ({resp.status_code})",
                "twilio",
                status_code=resp.status_code,
            ) from e

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception(is_retryable),
        reraise=True,
    )
    async def _get(self, path: str, **kwargs) -> dict[str, Any]:
        return await self._request("GET", path, **kwargs)

    # ── Call Management ─────────────────────────────────────

    async def place_call(
        self,
        to: str,
        from_: str,
        answer_url: str,
        status_callback_url: str,
        ring_timeout: int = 45,
    ) -> CallHandle:
        """
        Place an outbound call with answering-machine detection.

        Not retried: a repeated POST could dial the callee twice.

        Args:
            to: Destination phone number (E.164)
            from_: One of our Twilio numbers (E.164)
            answer_url: Where Twilio fetches TwiML once the call connects
            status_callback_url: Webhook URL for call status events
            ring_timeout: Seconds to let the phone ring
        """
        # Twilio uses form-encoded POST, not JSON
        payload = {
            "To": to,
            "From": from_,
            "Url": answer_url,
            "StatusCallback": status_callback_url,
            "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
            "StatusCallbackMethod": "POST",
            "Timeout": str(ring_timeout),
            "MachineDetection": "DetectMessageEnd",
            "Record": "false",
            "Trim": "trim-silence",
        }

        logger.info("twilio_place_call", to=to, from_number=from_)
        result = await self._request("POST", "/Calls", data=payload)

        return CallHandle(
            sid=result.get("sid", ""),
            to=result.get("to") or to,
            from_=result.get("from") or from_,
            status=result.get("status", "queued"),
        )

    async def lookup_number_config(self, phone_number: str) -> NumberConfig:
        """Fetch the account's configuration for one of its incoming numbers."""
        logger.info("twilio_lookup_number", phone_number=phone_number)
        result = await self._get("/IncomingPhoneNumbers", params={"PhoneNumber": phone_number})
        numbers = result.get("incoming_phone_numbers") or []
        if not numbers:
            raise UpstreamError("Phone number not found in Twilio account", "twilio")

        number = numbers[0]
        return NumberConfig(
            phone_number=number.get("phone_number", phone_number),
            voice_url=number.get("voice_url") or None,
            sid=number.get("sid", ""),
        )

    # ── Webhook Parsing ─────────────────────────────────────

    @staticmethod
    def parse_status_webhook(payload: dict[str, Any]) -> StatusCallback:
        """
        Normalize a Twilio status webhook form.

        Twilio sends:
          - CallSid, CallStatus, SipResponseCode, CallDuration, AnsweredBy, ...
        Missing or malformed optional fields degrade to None.
        """
        return StatusCallback(
            call_sid=(payload.get("CallSid") or "").strip(),
            call_status=(payload.get("CallStatus") or "").strip().lower(),
            sip_response_code=_blank_to_none(payload.get("SipResponseCode")),
            call_duration=_parse_int(payload.get("CallDuration")),
            answered_by=_blank_to_none(payload.get("AnsweredBy")),
        )

    # ── Helpers ─────────────────────────────────────────────

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"Twilio API error {resp.status_code}"
    return body.get("message") or f"Twilio API error {resp.status_code}"
