"""
Voiceflow Webhook Client — hands answered calls to a Voiceflow agent.

Each of our Twilio numbers has its voice URL pointed at a Voiceflow
Twilio webhook:

    https://runtime-api.voiceflow.com/v1/twilio/webhooks/<webhookId>/answer?authorization=<apiKey>

For outbound calls Twilio fetches TwiML from us instead, so we recover
the webhook id and key from the number's config and fetch the agent's
opening TwiML ourselves, with To/From swapped so the agent sees the call
as if the callee had dialed in.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from channels.base import UpstreamError, is_retryable
from channels.telephony.twiml import is_twiml
from models.schemas import NumberConfig, WebhookTarget

logger = structlog.get_logger()

DEFAULT_RUNTIME_URL = "https://runtime-api.voiceflow.com/v1/twilio/webhooks"


class VoiceflowClient:
    """Fetches call-control TwiML from the Voiceflow Twilio runtime."""

    def __init__(
        self,
        runtime_url: str = DEFAULT_RUNTIME_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.runtime_url = runtime_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(15.0, connect=5.0),
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def resolve_webhook(number_config: NumberConfig) -> WebhookTarget:
        """Extract webhook id and API key from a number's voice URL."""
        if not number_config.voice_url:
            raise UpstreamError("No voice URL configured for this phone number", "voiceflow")

        parsed = urlparse(number_config.voice_url)
        if "/webhooks/" not in parsed.path:
            raise UpstreamError("Invalid Voiceflow webhook URL", "voiceflow")

        webhook_id = parsed.path.split("/webhooks/", 1)[1].split("/")[0]
        if not webhook_id:
            raise UpstreamError("Invalid Voiceflow webhook URL", "voiceflow")

        api_key = parse_qs(parsed.query).get("authorization", [None])[0]
        return WebhookTarget(webhook_id=webhook_id, api_key=api_key)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception(is_retryable),
        reraise=True,
    )
    async def fetch_call_control_markup(
        self, webhook_id: str, api_key: Optional[str], params: dict[str, Any],
    ) -> Optional[str]:
        """
        GET the agent's answer TwiML.

        Returns None when the runtime answers with something that is not
        TwiML; raises UpstreamError when the request itself fails.
        """
        client = await self._get_client()
        url = f"{self.runtime_url}/{webhook_id}/answer"
        query = {"authorization": api_key or "", **params}

        try:
            resp = await client.get(url, params=query)
        except httpx.HTTPError as e:
            logger.error("voiceflow_transport_error", webhook_id=webhook_id, error=str(e))
            raise UpstreamError(f"Voiceflow request failed: {e}", "voiceflow", retryable=True) from e

        if resp.status_code >= 400:
            logger.error(
                "voiceflow_api_error",
                status=resp.status_code,
                body=resp.text[:500],
                webhook_id=webhook_id,
            )
            raise UpstreamError(
                f"Voiceflow webhook returned {resp.status_code}",
                "voiceflow",
                status_code=resp.status_code,
                retryable=resp.status_code >= 500,
            )

        if not is_twiml(resp.text):
            logger.error("voiceflow_unexpected_response", webhook_id=webhook_id, body=resp.text[:500])
            return None
        return resp.text

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
