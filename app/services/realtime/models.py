"""Realtime session configuration models."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.core.config import Settings


class SessionConfig(BaseModel):
    """Parameters bound to a call at accept time and reused for the channel."""

    model: str
    voice: str
    input_audio_format: str
    output_audio_format: str
    instructions: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionConfig":
        return cls(
            model=settings.realtime_model,
            voice=settings.realtime_voice,
            input_audio_format=settings.audio_format,
            output_audio_format=settings.audio_format,
            instructions=settings.strict_instructions,
        )

    def to_accept_body(self) -> Dict[str, Any]:
        """Body of the call accept request."""
        return {
            "type": "realtime",
            "model": self.model,
            "voice": self.voice,
            "input_audio_format": self.input_audio_format,
            "output_audio_format": self.output_audio_format,
            "instructions": self.instructions,
        }


class SessionOptions(BaseModel):
    """
    Session-wide configuration update (``session.update``).

    Only fields that were explicitly set are sent. Setting ``turn_detection``
    or ``input_audio_transcription`` to ``None`` disables the feature on the
    remote side, so an explicit ``None`` is kept on the wire as ``null``.
    """

    turn_detection: Optional[Dict[str, Any]] = None
    input_audio_transcription: Optional[Dict[str, Any]] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    instructions: Optional[str] = None
    modalities: Optional[List[str]] = None
    voice: Optional[str] = None
    input_audio_format: Optional[str] = None
    output_audio_format: Optional[str] = None

    def to_session_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)
