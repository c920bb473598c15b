"""Call accept requests against the realtime calls API."""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import settings
from app.services.realtime.errors import AcceptError
from app.services.realtime.models import SessionConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcceptResult:
    """Successful accept of a call."""

    call_id: str
    status_code: int


def build_auth_headers(api_key: str) -> dict:
    """Headers shared by the accept request and the realtime websocket."""
    return {
        "Authorization": f"Bearer {api_key}",
        "OpenAI-Beta": "realtime=v1",
    }


class CallAcceptor:
    """
    Issues the one-shot accept request for an incoming call.

    Accepting a call provisions it on the remote side, so a request is never
    retried here; callers gate duplicates through the call registry.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.openai_api_key
        self.api_base = (api_base or settings.openai_api_base).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.accept_timeout_seconds
        self._transport = transport

    def accept_url(self, call_id: str) -> str:
        return f"{self.api_base}/realtime/calls/{call_id}/accept"

    async def accept(self, call_id: str, session_config: SessionConfig) -> AcceptResult:
        """
        Accept a call with the given session parameters.

        Args:
            call_id: Call identifier from the incoming call webhook
            session_config: Model, voice, codecs and default instructions

        Returns:
            AcceptResult on a 2xx answer

        Raises:
            AcceptError: On a non-2xx answer or a transport failure
        """
        url = self.accept_url(call_id)
        logger.info(f"[ACCEPT] Accepting call - CallId: {call_id}, Model: {session_config.model}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    json=session_config.to_accept_body(),
                    headers=build_auth_headers(self.api_key),
                )
        except httpx.HTTPError as e:
            logger.error(
                f"[ACCEPT] Transport error - CallId: {call_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            raise AcceptError(status=0, body=str(e)) from e

        if not response.is_success:
            logger.error(
                f"[ACCEPT] Accept rejected - CallId: {call_id}, "
                f"Status: {response.status_code}, Body: {response.text[:500]}"
            )
            raise AcceptError(status=response.status_code, body=response.text)

        logger.info(f"[ACCEPT] Call accepted - CallId: {call_id}, Status: {response.status_code}")
        return AcceptResult(call_id=call_id, status_code=response.status_code)
