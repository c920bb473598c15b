"""Normalized realtime channel events.

The phase sequencer never looks at raw wire messages. Every inbound message is
translated here into one of a small set of event types; messages that do not
matter for orchestration translate to ``None``.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

# Explicit start of audio playback for a response
AUDIO_STARTED_TYPES = {"response.output_audio_buffer.started"}
# First audio fragment of a response; counts as an implicit start
AUDIO_DELTA_TYPES = {"response.output_audio.delta", "response.audio.delta"}
FAILED_RESPONSE_STATUSES = {"failed", "cancelled", "incomplete"}


@dataclass(frozen=True)
class ResponseCreated:
    response_id: str
    event_id: Optional[str] = None


@dataclass(frozen=True)
class AudioStarted:
    """Audio for a response began; ``implicit`` when inferred from a delta."""

    response_id: str
    implicit: bool = False


@dataclass(frozen=True)
class ResponseCompleted:
    response_id: str


@dataclass(frozen=True)
class ResponseFailed:
    response_id: Optional[str]
    reason: str
    event_id: Optional[str] = None


@dataclass(frozen=True)
class ChannelClosed:
    code: Optional[int]
    reason: str = ""


@dataclass(frozen=True)
class ChannelError:
    detail: str


RealtimeEvent = Union[
    ResponseCreated,
    AudioStarted,
    ResponseCompleted,
    ResponseFailed,
    ChannelClosed,
    ChannelError,
]


def _response_id(message: Dict[str, Any]) -> Optional[str]:
    response = message.get("response")
    if isinstance(response, dict) and response.get("id"):
        return response["id"]
    return message.get("response_id")


def parse_server_event(message: Dict[str, Any]) -> Optional[RealtimeEvent]:
    """Translate one decoded server message into a normalized event."""
    event_type = message.get("type")
    response_id = _response_id(message)

    if event_type == "response.created" and response_id:
        response = message.get("response") or {}
        metadata = response.get("metadata") or {}
        return ResponseCreated(
            response_id=response_id,
            event_id=metadata.get("client_event_id"),
        )

    if event_type in AUDIO_STARTED_TYPES and response_id:
        return AudioStarted(response_id=response_id)

    if event_type in AUDIO_DELTA_TYPES and response_id:
        return AudioStarted(response_id=response_id, implicit=True)

    if event_type == "response.done" and response_id:
        response = message.get("response") or {}
        status = response.get("status", "completed")
        if status in FAILED_RESPONSE_STATUSES:
            details = response.get("status_details") or {}
            reason = details.get("reason") or details.get("type") or status
            return ResponseFailed(response_id=response_id, reason=str(reason))
        return ResponseCompleted(response_id=response_id)

    if event_type == "response.failed":
        error = message.get("error") or {}
        return ResponseFailed(
            response_id=response_id,
            reason=str(error.get("message") or "response failed"),
        )

    if event_type == "error":
        error = message.get("error") or {}
        return ResponseFailed(
            response_id=response_id,
            reason=str(error.get("message") or error.get("code") or "error"),
            event_id=error.get("event_id"),
        )

    return None
