"""Phase sequencer driving the speak-first opening of a call."""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from pydantic import BaseModel

from app.core.config import Settings
from app.services.orchestration.phases import CallPhase
from app.services.orchestration.script import Script, ScriptedUtterance, validate_script
from app.services.orchestration.watchdog import AudioStartWatchdog
from app.services.realtime.events import (
    AudioStarted,
    ChannelClosed,
    ChannelError,
    RealtimeEvent,
    ResponseCompleted,
    ResponseCreated,
    ResponseFailed,
)
from app.services.realtime.models import SessionConfig, SessionOptions

logger = logging.getLogger(__name__)


class SessionChannel(Protocol):
    """Commands the sequencer needs from a streaming session."""

    async def configure_session(self, options: SessionOptions) -> None: ...

    async def speak(self, text: str) -> str: ...

    async def cancel_response(self, response_id: str) -> None: ...


class SequencerConfig(BaseModel):
    """Timing and session parameters of the speak-first sequence."""

    session: SessionConfig
    strict_instructions: str
    conversation_instructions: str
    conversation_temperature: float = 0.6
    transcription_model: Optional[str] = "whisper-1"
    settle_delay_ms: int = 800
    inter_utterance_delay_ms: int = 250
    audio_start_timeout_ms: int = 1200
    max_retries: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "SequencerConfig":
        return cls(
            session=SessionConfig.from_settings(settings),
            strict_instructions=settings.strict_instructions,
            conversation_instructions=settings.conversation_instructions,
            conversation_temperature=settings.conversation_temperature,
            transcription_model=settings.transcription_model or None,
            settle_delay_ms=settings.settle_delay_ms,
            inter_utterance_delay_ms=settings.inter_utterance_delay_ms,
            audio_start_timeout_ms=settings.audio_start_timeout_ms,
        )

    def scripted_options(self) -> SessionOptions:
        """Silent, deterministic session used while scripted lines play."""
        return SessionOptions(
            turn_detection=None,
            input_audio_transcription=None,
            temperature=0.0,
            instructions=self.strict_instructions,
            modalities=["audio", "text"],
            voice=self.session.voice,
            input_audio_format=self.session.input_audio_format,
            output_audio_format=self.session.output_audio_format,
        )

    def conversation_options(self) -> SessionOptions:
        """Voice-activated session installed at hand-off."""
        transcription = {"model": self.transcription_model} if self.transcription_model else None
        return SessionOptions(
            turn_detection={"type": "server_vad"},
            input_audio_transcription=transcription,
            temperature=self.conversation_temperature,
            instructions=self.conversation_instructions,
        )


@dataclass
class PendingUtterance:
    """The one scripted utterance currently awaiting a terminal event."""

    utterance: ScriptedUtterance
    attempt: int = 1
    event_id: Optional[str] = None
    response_id: Optional[str] = None
    # Set while the stalled response is being cancelled for a resend
    superseded: bool = False


class PhaseSequencer:
    """
    State machine for one call: INIT -> [PRIMER] -> NOTICE -> [INTRO] -> CONVERSATION.

    Only one scripted utterance is ever pending. The next one is requested
    after the pending one completes or fails; after the last one the session
    is reconfigured for free conversation and the sequencer goes quiet.
    """

    def __init__(
        self,
        call_id: str,
        channel: SessionChannel,
        script: Script,
        config: SequencerConfig,
    ):
        validate_script(script)
        self.call_id = call_id
        self.channel = channel
        self.script = script
        self.config = config
        self.phase = CallPhase.INIT
        self.pending: Optional[PendingUtterance] = None
        self.retries = 0
        self.skipped: List[ScriptedUtterance] = []
        self._next_index = 0
        self._stopped = False
        self.watchdog = AudioStartWatchdog(
            timeout_ms=config.audio_start_timeout_ms,
            on_timeout=self.on_audio_start_timeout,
            call_id=call_id,
        )

    @property
    def in_conversation(self) -> bool:
        return self.phase == CallPhase.CONVERSATION

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def start(self) -> None:
        """Silence the session, let the media path settle, speak the first line."""
        if self.phase != CallPhase.INIT:
            raise RuntimeError(f"Sequencer already started (phase: {self.phase})")

        await self.channel.configure_session(self.config.scripted_options())
        logger.info(f"[SEQUENCER] Scripted session configured - CallId: {self.call_id}")

        await asyncio.sleep(self.config.settle_delay_ms / 1000)
        await self._speak_next()

    async def handle(self, event: RealtimeEvent) -> None:
        """Apply one normalized channel event."""
        if self._stopped:
            return

        if isinstance(event, ResponseCreated):
            self._on_response_created(event)
        elif isinstance(event, AudioStarted):
            self._on_audio_started(event)
        elif isinstance(event, ResponseCompleted):
            if self._is_pending_response(event.response_id):
                await self._finish_pending(failed=False)
        elif isinstance(event, ResponseFailed):
            await self._on_response_failed(event)
        elif isinstance(event, (ChannelClosed, ChannelError)):
            self.stop()
        else:
            raise TypeError(f"Unhandled realtime event: {event!r}")

    async def on_audio_start_timeout(self, response_id: str, text: str) -> bool:
        """
        Resend a silent utterance once; a second silence is only logged.

        Returns:
            True if the utterance was resent
        """
        pending = self.pending
        if self._stopped or pending is None or pending.response_id != response_id:
            return False

        if pending.attempt > self.config.max_retries:
            logger.warning(
                f"[SEQUENCER] Still no audio after retry, not retrying again - "
                f"CallId: {self.call_id}, ResponseId: {response_id}, Phase: {pending.utterance.phase}"
            )
            return False

        pending.superseded = True
        await self.channel.cancel_response(response_id)

        # The line may have completed, or the channel closed, while the cancel was in flight
        if self._stopped or self.pending is not pending:
            logger.info(
                f"[SEQUENCER] Utterance finished during retry, not resending - "
                f"CallId: {self.call_id}, ResponseId: {response_id}"
            )
            return False

        self.retries += 1
        logger.warning(
            f"[SEQUENCER] Retrying silent utterance - CallId: {self.call_id}, "
            f"ResponseId: {response_id}, Phase: {pending.utterance.phase}"
        )
        await self._speak(pending.utterance, attempt=pending.attempt + 1)
        return True

    def stop(self) -> None:
        """Cancel all timers and drop the pending utterance."""
        if self._stopped:
            return
        self._stopped = True
        self.watchdog.cancel_all()
        self.pending = None
        logger.info(f"[SEQUENCER] Stopped - CallId: {self.call_id}, Phase: {self.phase}")

    def _advance_to(self, phase: CallPhase) -> None:
        if phase.rank <= self.phase.rank:
            raise RuntimeError(f"Phase cannot move from {self.phase} to {phase}")
        old_phase = self.phase
        self.phase = phase
        logger.info(
            f"[SEQUENCER] Phase changed: {old_phase.value} -> {phase.value} - CallId: {self.call_id}"
        )

    async def _speak_next(self) -> None:
        if self._stopped:
            return
        if self._next_index >= len(self.script):
            await self._enter_conversation()
            return

        utterance = self.script[self._next_index]
        self._next_index += 1
        self._advance_to(utterance.phase)
        await self._speak(utterance)

    async def _speak(self, utterance: ScriptedUtterance, attempt: int = 1) -> None:
        pending = PendingUtterance(utterance=utterance, attempt=attempt)
        self.pending = pending
        pending.event_id = await self.channel.speak(utterance.text)

    async def _enter_conversation(self) -> None:
        self._advance_to(CallPhase.CONVERSATION)
        await self.channel.configure_session(self.config.conversation_options())
        logger.info(f"[SEQUENCER] Hand-off to conversation mode - CallId: {self.call_id}")

    def _on_response_created(self, event: ResponseCreated) -> None:
        pending = self.pending
        if pending is None or pending.response_id is not None:
            return
        if event.event_id is not None and pending.event_id is not None and event.event_id != pending.event_id:
            return

        pending.response_id = event.response_id
        self.watchdog.arm(event.response_id, pending.utterance.text)
        logger.info(
            f"[SEQUENCER] Response created - CallId: {self.call_id}, "
            f"ResponseId: {event.response_id}, Phase: {pending.utterance.phase}, Attempt: {pending.attempt}"
        )

    def _on_audio_started(self, event: AudioStarted) -> None:
        if event.response_id in self.watchdog.audio_confirmed:
            return
        self.watchdog.confirm(event.response_id)
        if self._is_pending_response(event.response_id):
            source = "first delta" if event.implicit else "buffer started"
            logger.info(
                f"[SEQUENCER] Audio started ({source}) - CallId: {self.call_id}, "
                f"ResponseId: {event.response_id}"
            )

    async def _on_response_failed(self, event: ResponseFailed) -> None:
        pending = self.pending
        if pending is None:
            return
        if event.response_id is not None:
            matches = event.response_id == pending.response_id
        else:
            matches = event.event_id is not None and event.event_id == pending.event_id
        if not matches:
            logger.debug(
                f"[SEQUENCER] Ignoring failure unrelated to pending line - CallId: {self.call_id}, "
                f"Reason: {event.reason}"
            )
            return
        if pending.superseded:
            logger.debug(
                f"[SEQUENCER] Ignoring failure of response being resent - CallId: {self.call_id}, "
                f"Reason: {event.reason}"
            )
            return

        logger.warning(
            f"[SEQUENCER] Scripted line failed, skipping - CallId: {self.call_id}, "
            f"Phase: {pending.utterance.phase}, Reason: {event.reason}"
        )
        await self._finish_pending(failed=True)

    def _is_pending_response(self, response_id: str) -> bool:
        return self.pending is not None and self.pending.response_id == response_id

    async def _finish_pending(self, failed: bool) -> None:
        pending = self.pending
        if pending is None:
            return
        if pending.response_id is not None:
            self.watchdog.disarm(pending.response_id)
        if failed:
            self.skipped.append(pending.utterance)
        self.pending = None

        if self._next_index < len(self.script) and self.config.inter_utterance_delay_ms > 0:
            await asyncio.sleep(self.config.inter_utterance_delay_ms / 1000)
        await self._speak_next()
