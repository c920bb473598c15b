"""Realtime call webhook endpoints."""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from openai import InvalidWebhookSignatureError

from app.core.dependencies import get_orchestrator, get_webhook_verifier
from app.services.orchestration.orchestrator import CallOrchestrator, CallOutcome
from app.services.realtime.webhooks import (
    INCOMING_CALL_EVENT,
    WebhookVerifier,
    extract_call_id,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/openai")
async def handle_realtime_webhook(
    request: Request,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
    verifier: Optional[WebhookVerifier] = Depends(get_webhook_verifier),
):
    """
    Handle realtime call events.

    Only ``realtime.call.incoming`` starts work. Every delivery from the
    provider is answered with 200, failures included, so the provider does
    not redeliver and trigger a second accept.
    """
    body = await request.body()

    if verifier is not None:
        try:
            verifier.verify(body, request.headers)
        except InvalidWebhookSignatureError:
            logger.warning(
                f"[WEBHOOK] Rejected delivery with invalid signature - "
                f"Client: {request.client.host if request.client else 'unknown'}"
            )
            raise HTTPException(status_code=400, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("[WEBHOOK] Ignoring delivery with invalid JSON body")
        return {"ok": False, "error": "invalid_json"}

    if not isinstance(payload, dict):
        return {"ok": True, "ignored": True}

    event_type = payload.get("type")
    call_id = extract_call_id(payload)
    logger.info(f"[WEBHOOK] Received event - Type: {event_type}, CallId: {call_id}")

    if event_type != INCOMING_CALL_EVENT or not call_id:
        return {"ok": True, "ignored": True}

    try:
        result = await orchestrator.handle_incoming_call(call_id)
    except Exception as e:
        logger.error(
            f"[WEBHOOK] Error handling incoming call - CallId: {call_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return {"ok": False, "error": "handler_exception"}

    if result.outcome == CallOutcome.ACCEPT_FAILED:
        return {"ok": False, "stage": "accept", "status": result.status_code}
    if result.outcome == CallOutcome.DUPLICATE:
        return {"ok": True, "duplicate": True}
    return {"ok": True}
