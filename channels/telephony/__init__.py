"""
Telephony provider client for PSTN call management.

Supports: Twilio.
The client provides: place_call, lookup_number_config, parse_status_webhook, close.

Usage:
    from channels.telephony import TelephonyFactory
    client = TelephonyFactory.create(settings.telephony)
    handle = await client.place_call(to="+14155550100", ...)
"""
from channels.telephony.twilio_client import TwilioClient
from channels.telephony.factory import TelephonyFactory, TelephonyClient

__all__ = ["TwilioClient", "TelephonyFactory", "TelephonyClient"]
