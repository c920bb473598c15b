"""Call orchestrator: accept, open the channel, run the speak-first sequence."""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, settings as default_settings
from app.services.call_session.models import AcceptDecision
from app.services.call_session.registry import CallRegistry
from app.services.orchestration.script import Script, build_script_from_settings
from app.services.orchestration.sequencer import PhaseSequencer, SequencerConfig
from app.services.persistence.calls import CallRecordService
from app.services.realtime.acceptor import CallAcceptor
from app.services.realtime.client import RealtimeSessionClient
from app.services.realtime.errors import AcceptError, ChannelOpenError
from app.services.realtime.events import ChannelClosed, ChannelError
from app.services.realtime.models import SessionConfig

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, SessionConfig], Awaitable[Any]]


class CallOutcome(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    ACCEPT_FAILED = "accept_failed"


@dataclass(frozen=True)
class IncomingCallResult:
    """What happened to one incoming call event."""

    call_id: str
    outcome: CallOutcome
    status_code: Optional[int] = None
    detail: str = ""


class CallOrchestrator:
    """
    Runs incoming calls end to end.

    Each accepted call gets its own asyncio task owning one channel and one
    sequencer. Failures stay inside the call: they are logged and recorded,
    never raised to the webhook.
    """

    def __init__(
        self,
        registry: CallRegistry,
        acceptor: CallAcceptor,
        settings: Optional[Settings] = None,
        script: Optional[Script] = None,
        sequencer_config: Optional[SequencerConfig] = None,
        client_factory: Optional[ClientFactory] = None,
        session_factory: Optional[Callable[[], Any]] = None,
    ):
        settings = settings or default_settings
        self.registry = registry
        self.acceptor = acceptor
        self.script = script or build_script_from_settings(settings)
        self.sequencer_config = sequencer_config or SequencerConfig.from_settings(settings)
        self.client_factory = client_factory or RealtimeSessionClient.open
        self.session_factory = session_factory
        self._tasks: Set[asyncio.Task] = set()

    @property
    def session_config(self) -> SessionConfig:
        return self.sequencer_config.session

    @property
    def active_calls(self) -> int:
        return len(self._tasks)

    async def handle_incoming_call(self, call_id: str) -> IncomingCallResult:
        """
        Accept a call once and start its session in the background.

        Duplicate deliveries of the same call return DUPLICATE without any
        side effect.
        """
        decision = self.registry.try_begin_accept(call_id)
        if decision != AcceptDecision.PROCEED:
            logger.info(f"[ORCHESTRATOR] Duplicate incoming call ignored - CallId: {call_id}, Decision: {decision.value}")
            return IncomingCallResult(call_id, CallOutcome.DUPLICATE, detail=decision.value)

        await self._record(lambda calls: calls.create_call(call_id))

        try:
            accepted = await self.acceptor.accept(call_id, self.session_config)
        except AcceptError as e:
            self.registry.mark_accept_failed(call_id)
            await self._record(
                lambda calls: calls.update_status(
                    call_id, "accept_failed", accept_status_code=e.status, error=e.body[:1000]
                )
            )
            return IncomingCallResult(call_id, CallOutcome.ACCEPT_FAILED, status_code=e.status, detail=e.body)
        except Exception:
            self.registry.mark_accept_failed(call_id)
            raise

        self.registry.mark_accepted(call_id)
        await self._record(
            lambda calls: calls.update_status(call_id, "accepted", accept_status_code=accepted.status_code)
        )

        if self.registry.try_begin_orchestration(call_id):
            self._spawn(call_id)
        else:
            logger.warning(f"[ORCHESTRATOR] Session already running, not opening another - CallId: {call_id}")

        return IncomingCallResult(call_id, CallOutcome.ACCEPTED, status_code=accepted.status_code)

    def _spawn(self, call_id: str) -> None:
        task = asyncio.create_task(self.run_session(call_id), name=f"call-{call_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_session(self, call_id: str) -> None:
        """Open the channel and drive the call until the channel ends."""
        client = None
        sequencer = None
        status = "failed"
        error: Optional[str] = None

        try:
            client = await self.client_factory(call_id, self.session_config)
            await self._record(lambda calls: calls.update_status(call_id, "in_progress"))

            sequencer = PhaseSequencer(call_id, client, self.script, self.sequencer_config)
            await sequencer.start()

            async for event in client.events():
                await sequencer.handle(event)
                if isinstance(event, ChannelError):
                    error = event.detail
                    logger.error(f"[ORCHESTRATOR] Channel error - CallId: {call_id}, Detail: {event.detail}")
                elif isinstance(event, ChannelClosed):
                    logger.info(
                        f"[ORCHESTRATOR] Channel closed - CallId: {call_id}, "
                        f"Code: {event.code}, Reason: {event.reason}"
                    )

            if error is None and not sequencer.in_conversation:
                error = f"channel closed during {sequencer.phase.value}"
            if error is None:
                status = "completed"

        except ChannelOpenError as e:
            error = str(e)
        except Exception as e:
            error = f"{type(e).__name__}: {str(e)}"
            logger.error(
                f"[ORCHESTRATOR] Session failed - CallId: {call_id}, Error: {error}",
                exc_info=True,
            )
        finally:
            if sequencer is not None:
                sequencer.stop()
                phase, retries = sequencer.phase.value, sequencer.retries
                await self._record(lambda calls: calls.update_progress(call_id, phase, retries))
            if client is not None:
                await client.close()
            await self._record(lambda calls: calls.update_status(call_id, status, error=error))
            self.registry.finish_session(call_id)
            logger.info(f"[ORCHESTRATOR] Session ended - CallId: {call_id}, Status: {status}")

    async def shutdown(self) -> None:
        """Cancel every running call session."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"[ORCHESTRATOR] Cancelled {len(tasks)} running session(s)")

    async def _record(self, action: Callable[[CallRecordService], Awaitable[Any]]) -> None:
        if self.session_factory is None:
            return
        try:
            async with self.session_factory() as db:
                await action(CallRecordService(db))
        except SQLAlchemyError as e:
            logger.error(f"[ORCHESTRATOR] Failed to write call record: {type(e).__name__}: {str(e)}")
