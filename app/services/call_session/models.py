"""Call session models."""
import time
from dataclasses import dataclass, field
from enum import Enum


class AcceptState(str, Enum):
    """Progress of the one-shot accept request for a call."""

    UNACCEPTED = "unaccepted"
    ACCEPTING = "accepting"
    ACCEPTED = "accepted"
    ACCEPT_FAILED = "accept_failed"

    def __str__(self) -> str:
        return self.value


class AcceptDecision(str, Enum):
    """Answer of the registry to an incoming call event."""

    PROCEED = "proceed"
    ALREADY_ACCEPTED = "already_accepted"
    ALREADY_IN_FLIGHT = "already_in_flight"
    ALREADY_FAILED = "already_failed"


@dataclass
class CallEntry:
    """In-memory idempotency state of one call."""

    call_id: str
    accept_state: AcceptState = AcceptState.UNACCEPTED
    orchestration_started: bool = False
    session_finished: bool = False
    created_at: float = field(default_factory=time.monotonic)

    @property
    def session_running(self) -> bool:
        return self.orchestration_started and not self.session_finished
