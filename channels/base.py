"""
Channel errors — structured error hierarchy for outbound collaborators.

Every failure talking to the telephony provider or the conversational
webhook runtime surfaces as an UpstreamError, whatever the transport
library raised underneath.
"""
from __future__ import annotations

from typing import Optional


class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class UpstreamError(ChannelError):
    """A provider or webhook collaborator failed or returned something unusable."""

    def __init__(
        self,
        message: str,
        channel: str = "",
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        self.status_code = status_code
        super().__init__(message, channel, retryable=retryable)


def is_retryable(exc: BaseException) -> bool:
    """tenacity predicate: retry only errors marked transient."""
    return isinstance(exc, ChannelError) and exc.retryable
