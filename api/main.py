"""
FastAPI Application — outbound call placement, status lookup, and the
two Twilio webhooks that drive the call tracker.

Endpoints:
  GET  /                    - Service info
  GET  /status/{call_id}    - Current status + event log of a call
  GET  /call?to=&from=      - Place an outbound call
  POST /call-status         - Twilio status callback (always 200, empty body)
  POST /voice               - Twilio answer webhook (returns TwiML)
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import Optional

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response

from channels.base import UpstreamError
from channels.telephony import TelephonyFactory
from channels.voiceflow import VoiceflowClient
from config.settings import Settings, get_settings
from context.tracker import CallTracker
from core.orchestrator import CallOrchestrator
from utils.phone import ValidationError

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

def build_orchestrator(settings: Settings) -> CallOrchestrator:
    """Wire the tracker and collaborators from validated settings."""
    settings.validate()
    tracker = CallTracker(
        call_timeout_seconds=settings.tracker.call_timeout_seconds,
        retention_seconds=settings.tracker.retention_seconds,
    )
    return CallOrchestrator(
        tracker=tracker,
        telephony=TelephonyFactory.create(settings.telephony),
        voiceflow=VoiceflowClient(runtime_url=settings.voiceflow.runtime_url),
        server_url=settings.server_url,
        ring_timeout=settings.tracker.call_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.orchestrator is None:
        # ConfigError here aborts startup.
        app.state.orchestrator = build_orchestrator(get_settings())

    logger.info("call_tracker_started")
    yield

    await app.state.orchestrator.close()
    logger.info("call_tracker_shutdown")


def _orchestrator(request: Request) -> CallOrchestrator:
    return request.app.state.orchestrator


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

def create_app(orchestrator: Optional[CallOrchestrator] = None) -> FastAPI:
    """
    Build the application. Pass an orchestrator to skip settings loading
    (tests); otherwise one is built from settings at startup.
    """
    app = FastAPI(
        title="Call Status Tracker",
        description="Outbound calls with normalized Twilio lifecycle status",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    @app.get("/")
    async def index():
        return {"info": "Voiceflow Voice Outbound Demo"}

    @app.get("/status/{call_id}")
    async def call_status(call_id: str, request: Request):
        record = _orchestrator(request).get_call(call_id)
        if record is None:
            return JSONResponse(status_code=404, content={"error": "Call not found"})
        return record.to_api()

    @app.get("/call")
    async def place_call(
        request: Request,
        to: Optional[str] = Query(None),
        from_: Optional[str] = Query(None, alias="from"),
    ):
        try:
            return await _orchestrator(request).place_call(to, from_)
        except ValidationError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except UpstreamError as e:
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to initiate call", "message": str(e)},
            )
        except Exception as e:
            logger.exception("call_placement_crashed", to=to, from_number=from_)
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to initiate call", "message": str(e) or type(e).__name__},
            )

    @app.post("/call-status")
    async def call_status_webhook(request: Request):
        """Twilio status callback — form-encoded."""
        try:
            form = dict(await request.form())
            _orchestrator(request).handle_status_webhook(form)
        except Exception:
            # Twilio retries on non-2xx; a failed fold is ours to log, not theirs to resend.
            logger.exception("call_status_webhook_failed")
        return Response(status_code=200)

    @app.post("/voice")
    async def voice_webhook(request: Request):
        """Twilio answer URL — returns TwiML."""
        form = dict(await request.form())
        markup = await _orchestrator(request).answer_call(form)
        return Response(content=markup, media_type="text/xml")

    return app


app = create_app()


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
