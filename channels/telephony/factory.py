"""
Telephony Provider Factory — instantiates the provider client from config.

The orchestrator only depends on the TelephonyClient protocol:
  - place_call(to, from_, answer_url, status_callback_url, ring_timeout) → CallHandle
  - lookup_number_config(phone_number) → NumberConfig
  - parse_status_webhook(payload) → StatusCallback
  - close() → clean up HTTP clients
"""
from __future__ import annotations

import structlog
from typing import Any, Protocol, runtime_checkable

from config.settings import TelephonyConfig
from models.schemas import CallHandle, NumberConfig, StatusCallback

logger = structlog.get_logger()


@runtime_checkable
class TelephonyClient(Protocol):
    """Common interface for telephony providers."""

    async def place_call(
        self,
        to: str,
        from_: str,
        answer_url: str,
        status_callback_url: str,
        ring_timeout: int = 45,
    ) -> CallHandle:
        ...

    async def lookup_number_config(self, phone_number: str) -> NumberConfig:
        ...

    @staticmethod
    def parse_status_webhook(payload: dict[str, Any]) -> StatusCallback:
        ...

    async def close(self) -> None:
        ...


class TelephonyFactory:
    """
    Creates a telephony client from TelephonyConfig.

    Usage:
        client = TelephonyFactory.create(settings.telephony)
        handle = await client.place_call(...)
    """

    SUPPORTED = ("twilio",)

    @staticmethod
    def create(config: TelephonyConfig) -> TelephonyClient:
        """
        Raises:
            ValueError: If the provider is not supported.
        """
        if config.provider == "twilio":
            from channels.telephony.twilio_client import TwilioClient
            client = TwilioClient(
                account_sid=config.account_sid,
                auth_token=config.auth_token,
            )
            logger.info("telephony_client_created", provider="twilio")
            return client

        raise ValueError(
            f"Unsupported telephony provider: {config.provider}. "
            f"Supported: {', '.join(TelephonyFactory.SUPPORTED)}"
        )
