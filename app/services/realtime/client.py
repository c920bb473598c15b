"""Streaming session client for the realtime websocket channel."""
import json
import logging
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from app.core.config import settings
from app.services.orchestration.prompts import get_verbatim_instructions
from app.services.realtime.acceptor import build_auth_headers
from app.services.realtime.errors import ChannelOpenError
from app.services.realtime.events import (
    ChannelClosed,
    ChannelError,
    RealtimeEvent,
    parse_server_event,
)
from app.services.realtime.models import SessionConfig, SessionOptions

logger = logging.getLogger(__name__)

DEFAULT_MODALITIES = ["audio", "text"]

Connector = Callable[..., Awaitable[Any]]


class RealtimeSessionClient:
    """
    One websocket channel bound to one accepted call.

    Commands are fire-and-forget JSON messages. Inbound messages are exposed
    through ``events()`` as normalized events. A closed or failed channel is
    terminal: there is no reconnect, the call bridge owns call continuity.
    """

    def __init__(self, call_id: str, session_config: SessionConfig, websocket: Any):
        self.call_id = call_id
        self.session_config = session_config
        self._ws = websocket
        self._closed = False

    @staticmethod
    def build_url(call_id: str, model: str, ws_base: Optional[str] = None) -> str:
        base = (ws_base or settings.openai_realtime_ws_base).rstrip("/")
        return f"{base}/realtime?{urlencode({'model': model, 'call_id': call_id})}"

    @classmethod
    async def open(
        cls,
        call_id: str,
        session_config: SessionConfig,
        api_key: Optional[str] = None,
        ws_base: Optional[str] = None,
        connect: Optional[Connector] = None,
    ) -> "RealtimeSessionClient":
        """
        Open the channel for an accepted call.

        Raises:
            ChannelOpenError: If the websocket cannot be established
        """
        url = cls.build_url(call_id, session_config.model, ws_base)
        headers = build_auth_headers(api_key or settings.openai_api_key)
        connect = connect or websockets.connect

        logger.info(f"[REALTIME] Opening channel - CallId: {call_id}")
        try:
            websocket = await connect(url, additional_headers=headers)
        except (OSError, WebSocketException) as e:
            logger.error(
                f"[REALTIME] Failed to open channel - CallId: {call_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            raise ChannelOpenError(f"Failed to open realtime channel: {e}") from e

        logger.info(f"[REALTIME] Channel open - CallId: {call_id}")
        return cls(call_id, session_config, websocket)

    @property
    def closed(self) -> bool:
        return self._closed

    async def _send(self, message: Dict[str, Any]) -> None:
        await self._ws.send(json.dumps(message))

    async def configure_session(self, options: SessionOptions) -> None:
        """Send a session-wide configuration update."""
        session = options.to_session_payload()
        await self._send({"type": "session.update", "session": session})
        logger.info(
            f"[REALTIME] session.update sent - CallId: {self.call_id}, "
            f"Fields: {sorted(session.keys())}"
        )

    async def speak(self, text: str, modalities: Optional[List[str]] = None) -> str:
        """
        Ask the service to say ``text`` verbatim.

        Returns:
            Client event id of the request. The service echoes it in the
            metadata of the ``response.created`` that follows and in any
            ``error`` caused by the request.
        """
        event_id = f"evt_{uuid.uuid4().hex}"
        await self._send(
            {
                "type": "response.create",
                "event_id": event_id,
                "response": {
                    "modalities": modalities or DEFAULT_MODALITIES,
                    "instructions": get_verbatim_instructions(text),
                    "audio": {
                        "voice": self.session_config.voice,
                        "format": self.session_config.output_audio_format,
                    },
                    "metadata": {"client_event_id": event_id},
                },
            }
        )
        logger.info(f"[REALTIME] response.create sent - CallId: {self.call_id}, Text: '{text[:80]}'")
        return event_id

    async def cancel_response(self, response_id: str) -> None:
        """Cancel an in-progress response."""
        await self._send({"type": "response.cancel", "response_id": response_id})
        logger.info(f"[REALTIME] response.cancel sent - CallId: {self.call_id}, ResponseId: {response_id}")

    async def events(self) -> AsyncIterator[RealtimeEvent]:
        """
        Yield normalized events until the channel ends.

        The last event is always ``ChannelClosed`` or ``ChannelError``.
        """
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    continue
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(
                        f"[REALTIME] Dropping undecodable message - CallId: {self.call_id}, "
                        f"Preview: {message[:64]!r}"
                    )
                    continue
                if not isinstance(data, dict):
                    continue
                event = parse_server_event(data)
                if event is None:
                    logger.debug(f"[REALTIME] Ignoring '{data.get('type')}' - CallId: {self.call_id}")
                    continue
                yield event
        except ConnectionClosedOK as e:
            yield ChannelClosed(code=_close_code(e), reason=_close_reason(e))
            return
        except ConnectionClosed as e:
            yield ChannelError(detail=f"connection closed abnormally: {e}")
            return
        except OSError as e:
            yield ChannelError(detail=f"{type(e).__name__}: {e}")
            return

        yield ChannelClosed(
            code=getattr(self._ws, "close_code", None),
            reason=getattr(self._ws, "close_reason", None) or "",
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.warning(f"[REALTIME] Error while closing channel - CallId: {self.call_id}, Error: {e}")
        logger.info(f"[REALTIME] Channel closed - CallId: {self.call_id}")


def _close_code(exc: ConnectionClosed) -> Optional[int]:
    frame = exc.rcvd or exc.sent
    return frame.code if frame else None


def _close_reason(exc: ConnectionClosed) -> str:
    frame = exc.rcvd or exc.sent
    return frame.reason if frame else ""
