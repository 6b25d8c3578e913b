"""Outbound collaborators: telephony provider and conversational webhook runtime."""
from channels.base import ChannelError, UpstreamError
from channels.voiceflow import VoiceflowClient

__all__ = ["ChannelError", "UpstreamError", "VoiceflowClient"]
