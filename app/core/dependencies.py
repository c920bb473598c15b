"""FastAPI dependencies."""
from functools import lru_cache
from typing import Optional

from app.core.config import settings
from app.db.database import AsyncSessionLocal
from app.services.call_session.registry import CallRegistry
from app.services.orchestration.orchestrator import CallOrchestrator
from app.services.realtime.acceptor import CallAcceptor
from app.services.realtime.webhooks import WebhookVerifier


@lru_cache
def get_call_registry() -> CallRegistry:
    """Get the process-wide call registry."""
    return CallRegistry(ttl_seconds=settings.call_registry_ttl_seconds)


@lru_cache
def get_orchestrator() -> CallOrchestrator:
    """Get the process-wide call orchestrator."""
    return CallOrchestrator(
        registry=get_call_registry(),
        acceptor=CallAcceptor(),
        settings=settings,
        session_factory=AsyncSessionLocal,
    )


@lru_cache
def get_webhook_verifier() -> Optional[WebhookVerifier]:
    """Get the webhook signature verifier, if a secret is configured."""
    if not settings.openai_webhook_secret:
        return None
    return WebhookVerifier(settings.openai_api_key, settings.openai_webhook_secret)
