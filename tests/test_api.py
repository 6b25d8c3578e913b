"""
HTTP surface tests, run in-process over ASGITransport.
"""
import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport
from unittest.mock import AsyncMock

from api.main import build_orchestrator, create_app
from channels.base import UpstreamError
from channels.telephony.twilio_client import TwilioClient
from config.settings import ConfigError, Settings, TelephonyConfig
from core.orchestrator import CallOrchestrator

from conftest import AGENT_TWIML, SERVER_URL


@pytest.fixture
def app(orchestrator):
    return create_app(orchestrator)


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestInfoAndStatus:

    @pytest.mark.asyncio
    async def test_index(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.json() == {"info": "Voiceflow Voice Outbound Demo"}

    @pytest.mark.asyncio
    async def test_unknown_call_is_404(self, client, tracker):
        resp = await client.get("/status/CA_missing")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Call not found"}
        assert tracker.stats()["records"] == 0

    @pytest.mark.asyncio
    async def test_status_document_shape(self, client, tracker):
        tracker.register_call("CA_001", "+14155550100", "+14155550199", "queued")
        await client.post("/call-status", data={"CallSid": "CA_001", "CallStatus": "ringing"})

        resp = await client.get("/status/CA_001")
        body = resp.json()
        assert resp.status_code == 200
        assert body["callId"] == "CA_001"
        assert body["to"] == "+14155550100"
        assert body["from"] == "+14155550199"
        assert body["status"] == "ringing"
        assert "lastUpdated" in body
        assert [e["status"] for e in body["events"]] == ["queued", "ringing"]
        assert "message" not in body["events"][0]
        tracker.shutdown()


class TestPlaceCall:

    @pytest.mark.asyncio
    async def test_place_call(self, client, tracker):
        resp = await client.get("/call", params={"to": "14155550100", "from": "14155550199"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["callSid"] == "CA_001"
        assert body["statusUrl"] == f"{SERVER_URL}/status/CA_001"
        assert tracker.get_record("CA_001") is not None
        tracker.shutdown()

    @pytest.mark.asyncio
    async def test_plus_decoded_as_space_is_accepted(self, client, telephony, tracker):
        resp = await client.get("/call?to=+14155550100&from=+14155550199")
        assert resp.status_code == 200
        assert telephony.place_call.await_args.kwargs["to"] == "+14155550100"
        tracker.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_number_is_400(self, client, telephony):
        resp = await client.get("/call", params={"to": "555", "from": "14155550199"})
        assert resp.status_code == 400
        assert "10-15 digits" in resp.json()["error"]
        telephony.place_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_number_is_400(self, client):
        resp = await client.get("/call", params={"to": "14155550100"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_provider_failure_is_500(self, client, telephony, tracker):
        telephony.place_call = AsyncMock(side_effect=UpstreamError("Authenticate", "twilio", status_code=401))
        resp = await client.get("/call", params={"to": "14155550100", "from": "14155550199"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to initiate call", "message": "Authenticate"}
        assert tracker.stats()["records"] == 0


class TestWebhooks:

    @pytest.mark.asyncio
    async def test_call_status_always_200_empty(self, client, tracker):
        resp = await client.post("/call-status", data={"CallSid": "CA_9", "CallStatus": "busy"})
        assert resp.status_code == 200
        assert resp.content == b""
        assert tracker.get_record("CA_9").status == "declined"
        tracker.shutdown()

    @pytest.mark.asyncio
    async def test_call_status_without_sid(self, client, tracker):
        resp = await client.post("/call-status", data={"CallStatus": "ringing"})
        assert resp.status_code == 200
        assert tracker.stats()["records"] == 0

    @pytest.mark.asyncio
    async def test_call_status_swallows_fold_failures(self, client, orchestrator):
        orchestrator.tracker.handle_status_callback = lambda callback: 1 / 0
        resp = await client.post("/call-status", data={"CallSid": "CA_1", "CallStatus": "ringing"})
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_voice_hands_off_to_agent(self, client):
        resp = await client.post("/voice", data={
            "CallSid": "CA_001", "To": "+14155550100", "From": "+14155550199", "AnsweredBy": "human",
        })
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/xml")
        assert resp.text == AGENT_TWIML

    @pytest.mark.asyncio
    async def test_voice_voicemail_hangs_up(self, client, tracker):
        resp = await client.post("/voice", data={
            "CallSid": "CA_001", "To": "+14155550100", "From": "+14155550199",
            "AnsweredBy": "machine_end_beep",
        })
        assert "<Hangup/>" in resp.text
        status = await client.get("/status/CA_001")
        assert status.json()["status"] == "machine"


class TestBootstrap:

    def test_missing_credentials_fail_fast(self):
        with pytest.raises(ConfigError) as exc:
            build_orchestrator(Settings())
        assert "TWILIO_ACCOUNT_SID" in str(exc.value)
        assert "SERVER_URL" in str(exc.value)

    def test_builds_from_valid_settings(self):
        settings = Settings(
            server_url="https://calls.example.com",
            telephony=TelephonyConfig(account_sid="AC_x", auth_token="t"),
        )
        orchestrator = build_orchestrator(settings)
        assert orchestrator.server_url == "https://calls.example.com"
        assert orchestrator.ring_timeout == 45
        assert orchestrator.tracker.call_timeout_seconds == 45


class TestUnreadableProviderResponses:
    """Twilio answering 2xx with a non-JSON body (e.g. a gateway page)."""

    @pytest_asyncio.fixture
    async def gateway_client(self, tracker, voiceflow):
        twilio = TwilioClient(
            "AC_test", "secret",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>")),
        )
        app = create_app(CallOrchestrator(tracker, twilio, voiceflow, SERVER_URL))
        async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
        await twilio.close()

    @pytest.mark.asyncio
    async def test_voice_apologizes_and_records_error(self, gateway_client, tracker):
        resp = await gateway_client.post("/voice", data={
            "CallSid": "CA_001", "To": "+14155550100", "From": "+14155550199", "AnsweredBy": "human",
        })
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/xml")
        assert "Sorry, there was an error processing your call." in resp.text
        assert "<Hangup/>" in resp.text
        assert tracker.get_record("CA_001").status == "error"

    @pytest.mark.asyncio
    async def test_call_returns_json_500(self, gateway_client, tracker):
        resp = await gateway_client.get("/call", params={"to": "14155550100", "from": "14155550199"})
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] == "Failed to initiate call"
        assert "unreadable" in body["message"]
        assert tracker.stats()["records"] == 0

    @pytest.mark.asyncio
    async def test_call_catches_unexpected_errors(self, client, telephony):
        telephony.place_call = AsyncMock(side_effect=RuntimeError("socket closed"))
        resp = await client.get("/call", params={"to": "14155550100", "from": "14155550199"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to initiate call", "message": "socket closed"}
