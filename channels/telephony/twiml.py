"""TwiML builders for the answer webhook's own responses."""
from __future__ import annotations

from xml.sax.saxutils import escape

XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'


def _response(*verbs: str) -> str:
    return f"{XML_HEADER}<Response>{''.join(verbs)}</Response>"


def say(text: str) -> str:
    return f"<Say>{escape(text)}</Say>"


def hangup() -> str:
    return "<Hangup/>"


def hangup_response() -> str:
    return _response(hangup())


def say_response(text: str) -> str:
    return _response(say(text))


def apology_response(text: str) -> str:
    """Speak an apology, then end the call."""
    return _response(say(text), hangup())


def is_twiml(body: object) -> bool:
    return isinstance(body, str) and "<?xml" in body
