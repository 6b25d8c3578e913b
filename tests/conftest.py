"""Shared test fixtures for the call status tracker."""
import pytest
from unittest.mock import AsyncMock, MagicMock

import httpx

from channels.telephony.twilio_client import TwilioClient
from channels.voiceflow import VoiceflowClient
from context.tracker import CallTracker
from core.orchestrator import CallOrchestrator
from models.schemas import CallHandle, NumberConfig

SERVER_URL = "https://calls.example.com"
AGENT_VOICE_URL = (
    "https://runtime-api.voiceflow.com/v1/twilio/webhooks/wh_123/answer"
    "?authorization=VF.DM.key"
)
AGENT_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response><Say>Hi</Say></Response>'


@pytest.fixture
def tracker() -> CallTracker:
    return CallTracker(call_timeout_seconds=45, retention_seconds=3600)


@pytest.fixture
def fast_tracker() -> CallTracker:
    """Sub-second timers for expiry/retention tests."""
    return CallTracker(call_timeout_seconds=0.05, retention_seconds=0.1)


@pytest.fixture
def telephony() -> MagicMock:
    """Twilio double: real webhook parsing, mocked network calls."""
    client = MagicMock()
    client.parse_status_webhook = TwilioClient.parse_status_webhook
    client.place_call = AsyncMock(return_value=CallHandle(
        sid="CA_001", to="+14155550100", from_="+14155550199", status="queued",
    ))
    client.lookup_number_config = AsyncMock(return_value=NumberConfig(
        phone_number="+14155550199", voice_url=AGENT_VOICE_URL,
    ))
    client.close = AsyncMock()
    return client


@pytest.fixture
def voiceflow_requests() -> list:
    return []


@pytest.fixture
def voiceflow(voiceflow_requests) -> VoiceflowClient:
    def handler(request: httpx.Request) -> httpx.Response:
        voiceflow_requests.append(request)
        return httpx.Response(200, text=AGENT_TWIML)

    return VoiceflowClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def orchestrator(tracker, telephony, voiceflow) -> CallOrchestrator:
    return CallOrchestrator(tracker, telephony, voiceflow, SERVER_URL)
