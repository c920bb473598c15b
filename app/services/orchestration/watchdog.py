"""Audio-start watchdog for scripted utterances."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Set

logger = logging.getLogger(__name__)

TimeoutCallback = Callable[[str, str], Awaitable[bool]]


class AudioStartWatchdog:
    """
    Detects utterances whose audio never started.

    Some bridge/media-path combinations silently drop the first synthesized
    packet. Each armed response gets a timer; if neither an audio start nor a
    completion disarms it in time, ``on_timeout(response_id, text)`` runs
    once for that response. The callback returns whether it actually resent
    the utterance, and only then is the id added to ``retry_issued``.
    """

    def __init__(self, timeout_ms: int, on_timeout: TimeoutCallback, call_id: str = ""):
        self.timeout = timeout_ms / 1000
        self.on_timeout = on_timeout
        self.call_id = call_id
        self.audio_confirmed: Set[str] = set()
        self.retry_issued: Set[str] = set()
        self.timed_out: Set[str] = set()
        self._timers: Dict[str, asyncio.Task] = {}

    @property
    def armed(self) -> Set[str]:
        return set(self._timers)

    def arm(self, response_id: str, text: str) -> None:
        """Start the timer for a response, unless audio already started."""
        if response_id in self.audio_confirmed or response_id in self._timers:
            return
        self._timers[response_id] = asyncio.create_task(self._expire(response_id, text))
        logger.debug(f"[WATCHDOG] Armed - CallId: {self.call_id}, ResponseId: {response_id}")

    def confirm(self, response_id: str) -> None:
        """Record that audio started for a response."""
        self.audio_confirmed.add(response_id)
        self.disarm(response_id)

    def disarm(self, response_id: str) -> None:
        timer = self._timers.pop(response_id, None)
        if timer is not None and not timer.done():
            timer.cancel()

    def cancel_all(self) -> None:
        for response_id in list(self._timers):
            self.disarm(response_id)

    async def _expire(self, response_id: str, text: str) -> None:
        try:
            await asyncio.sleep(self.timeout)
        except asyncio.CancelledError:
            return
        self._timers.pop(response_id, None)

        if response_id in self.audio_confirmed or response_id in self.timed_out:
            return
        self.timed_out.add(response_id)
        logger.warning(
            f"[WATCHDOG] No audio start within {int(self.timeout * 1000)}ms - "
            f"CallId: {self.call_id}, ResponseId: {response_id}"
        )
        try:
            if await self.on_timeout(response_id, text):
                self.retry_issued.add(response_id)
        except Exception as e:
            logger.error(
                f"[WATCHDOG] Timeout handler failed - CallId: {self.call_id}, "
                f"ResponseId: {response_id}, Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
