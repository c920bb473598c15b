"""Main FastAPI application."""
from fastapi import FastAPI
from contextlib import asynccontextmanager

from app.core.dependencies import get_orchestrator
from app.core.logging import setup_logging
from app.db.database import init_db
from app.api import calls, health
from app.api.webhooks import realtime as realtime_webhooks


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    yield
    # Shutdown
    await get_orchestrator().shutdown()


app = FastAPI(
    title="Speak-first Realtime Voice Agent",
    description="Accepts realtime calls and plays a compliance notice before free conversation",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(realtime_webhooks.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(calls.router, tags=["calls"])


@app.get("/")
async def root():
    return {
        "message": "Speak-first Realtime Voice Agent API",
        "version": "0.1.0",
    }


if __name__ == "__main__":
    import uvicorn

    from app.core.config import settings

    uvicorn.run("app.main:app", host=settings.host, port=settings.port)
