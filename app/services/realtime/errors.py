"""Realtime service errors."""
from typing import Optional


class RealtimeError(Exception):
    """Base error for the realtime call integration."""


class AcceptError(RealtimeError):
    """The remote service refused (or never answered) the call accept request."""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"Call accept failed with status {status}: {body[:200]}")


class ChannelOpenError(RealtimeError):
    """The streaming channel could not be established."""

    def __init__(self, detail: str, code: Optional[int] = None):
        self.detail = detail
        self.code = code
        super().__init__(detail)


class ScriptError(RealtimeError):
    """The configured speak-first script is not a valid sequence."""
