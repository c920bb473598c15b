"""Call record API endpoints."""
import logging
from typing import List
from fastapi import APIRouter, Depends, Request, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from app.db.database import get_db
from app.db.models import CallRecord
from app.services.persistence.calls import CallRecordService


router = APIRouter()
logger = logging.getLogger(__name__)


class CallRecordResponse(BaseModel):
    """Call record response model."""
    id: int
    call_id: str
    status: str
    phase: str
    accept_status_code: int | None = None
    retries: int = 0
    error: str | None = None
    started_at: str
    ended_at: str | None = None

    @classmethod
    def from_record(cls, call: CallRecord) -> "CallRecordResponse":
        return cls(
            id=call.id,
            call_id=call.call_id,
            status=call.status,
            phase=call.phase,
            accept_status_code=call.accept_status_code,
            retries=call.retries or 0,
            error=call.error,
            started_at=call.started_at.isoformat() if call.started_at else "",
            ended_at=call.ended_at.isoformat() if call.ended_at else None,
        )


@router.get("/api/calls", response_model=List[CallRecordResponse])
async def list_calls(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """List recent calls, newest first."""
    logger.info(
        f"[CALLS] List requested - limit: {limit}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    calls = await CallRecordService(db).list_calls(limit=limit)
    return [CallRecordResponse.from_record(call) for call in calls]


@router.get("/api/calls/{call_id}", response_model=CallRecordResponse)
async def get_call(call_id: str, db: AsyncSession = Depends(get_db)):
    """Get a single call record."""
    call = await CallRecordService(db).get_call(call_id)
    if call is None:
        raise HTTPException(status_code=404, detail=f"Call {call_id} not found")
    return CallRecordResponse.from_record(call)
