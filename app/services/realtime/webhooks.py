"""Incoming realtime webhook helpers."""
from typing import Any, Dict, Mapping, Optional

from openai import OpenAI

INCOMING_CALL_EVENT = "realtime.call.incoming"


def extract_call_id(payload: Dict[str, Any]) -> Optional[str]:
    """Find the call id in ``data.call_id``, ``data.id`` or ``data.call.id``."""
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    call = data.get("call")
    nested_id = call.get("id") if isinstance(call, dict) else None
    call_id = data.get("call_id") or data.get("id") or nested_id
    return str(call_id) if call_id else None


class WebhookVerifier:
    """Verifies webhook signatures with the OpenAI SDK."""

    def __init__(self, api_key: str, webhook_secret: str):
        self.client = OpenAI(api_key=api_key, webhook_secret=webhook_secret)

    def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        """
        Raises:
            openai.InvalidWebhookSignatureError: If the signature does not match
        """
        self.client.webhooks.verify_signature(body, dict(headers))
