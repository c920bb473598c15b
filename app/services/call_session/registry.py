"""Call registry: idempotency ledger for incoming call events."""
import logging
import threading
import time
from typing import Dict, Optional

from app.services.call_session.models import AcceptDecision, AcceptState, CallEntry

logger = logging.getLogger(__name__)


class CallRegistry:
    """
    Tracks which calls were accepted and which already have a session.

    Webhook providers redeliver events, sometimes concurrently. Every
    check-and-set below runs under one lock with no awaits inside, so at most
    one accept and at most one session happen per call id. State is
    process-local and lost on restart. A call whose session ended stays
    registered, so late redeliveries are still duplicates; entries without a
    running session are evicted after ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds: float = 3600):
        self.ttl_seconds = ttl_seconds
        self._calls: Dict[str, CallEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._calls)

    def get(self, call_id: str) -> Optional[CallEntry]:
        return self._calls.get(call_id)

    def try_begin_accept(self, call_id: str) -> AcceptDecision:
        """Claim the accept for a call, or report why it is not needed."""
        with self._lock:
            self._evict_expired_locked(time.monotonic())
            entry = self._calls.get(call_id)
            if entry is None:
                self._calls[call_id] = CallEntry(call_id=call_id, accept_state=AcceptState.ACCEPTING)
                return AcceptDecision.PROCEED
            if entry.accept_state == AcceptState.UNACCEPTED:
                entry.accept_state = AcceptState.ACCEPTING
                return AcceptDecision.PROCEED
            if entry.accept_state == AcceptState.ACCEPTING:
                return AcceptDecision.ALREADY_IN_FLIGHT
            if entry.accept_state == AcceptState.ACCEPT_FAILED:
                return AcceptDecision.ALREADY_FAILED
            return AcceptDecision.ALREADY_ACCEPTED

    def mark_accepted(self, call_id: str) -> None:
        self._set_accept_state(call_id, AcceptState.ACCEPTED)

    def mark_accept_failed(self, call_id: str) -> None:
        self._set_accept_state(call_id, AcceptState.ACCEPT_FAILED)

    def try_begin_orchestration(self, call_id: str) -> bool:
        """Claim the single streaming session of an accepted call."""
        with self._lock:
            entry = self._calls.get(call_id)
            if entry is None or entry.accept_state != AcceptState.ACCEPTED:
                return False
            if entry.orchestration_started:
                return False
            entry.orchestration_started = True
            return True

    def finish_session(self, call_id: str) -> None:
        """Mark the session of a call as ended; the entry stays until TTL eviction."""
        with self._lock:
            entry = self._calls.get(call_id)
            if entry is not None:
                entry.session_finished = True

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Drop entries older than the TTL. Returns the number removed."""
        with self._lock:
            return self._evict_expired_locked(time.monotonic() if now is None else now)

    def _set_accept_state(self, call_id: str, state: AcceptState) -> None:
        with self._lock:
            entry = self._calls.get(call_id)
            if entry is None:
                logger.warning(f"[REGISTRY] Unknown call, cannot mark {state} - CallId: {call_id}")
                return
            if entry.accept_state != AcceptState.ACCEPTING:
                logger.warning(
                    f"[REGISTRY] Ignoring {state} for call in state {entry.accept_state} - CallId: {call_id}"
                )
                return
            entry.accept_state = state

    def _evict_expired_locked(self, now: float) -> int:
        expired = [
            call_id
            for call_id, entry in self._calls.items()
            if not entry.session_running and now - entry.created_at > self.ttl_seconds
        ]
        for call_id in expired:
            del self._calls[call_id]
        if expired:
            logger.info(f"[REGISTRY] Evicted {len(expired)} expired call(s)")
        return len(expired)
