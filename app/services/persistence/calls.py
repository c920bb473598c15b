"""Call record persistence service."""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from app.db.models import CallRecord

TERMINAL_STATUSES = {"accept_failed", "completed", "failed"}


class CallRecordService:
    """Service for persisting call records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_call(self, call_id: str, status: str = "accepting") -> CallRecord:
        """Create a new call record or return existing one."""
        existing_call = await self.get_call(call_id)
        if existing_call:
            return existing_call

        call = CallRecord(call_id=call_id, status=status)
        self.db.add(call)
        await self.db.commit()
        await self.db.refresh(call)
        return call

    async def get_call(self, call_id: str) -> Optional[CallRecord]:
        """Get call record by realtime call id."""
        result = await self.db.execute(
            select(CallRecord).where(CallRecord.call_id == call_id)
        )
        return result.scalar_one_or_none()

    async def list_calls(self, limit: int = 100) -> List[CallRecord]:
        """Most recent calls first."""
        result = await self.db.execute(
            select(CallRecord).order_by(desc(CallRecord.started_at), desc(CallRecord.id)).limit(limit)
        )
        return list(result.scalars().all())

    async def update_status(
        self,
        call_id: str,
        status: str,
        accept_status_code: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Optional[CallRecord]:
        """Update call status; terminal statuses also stamp ``ended_at``."""
        call = await self.get_call(call_id)
        if call:
            call.status = status
            if accept_status_code is not None:
                call.accept_status_code = accept_status_code
            if error is not None:
                call.error = error
            if status in TERMINAL_STATUSES and call.ended_at is None:
                call.ended_at = datetime.utcnow()
            await self.db.commit()
            await self.db.refresh(call)
        return call

    async def update_progress(
        self, call_id: str, phase: str, retries: int
    ) -> Optional[CallRecord]:
        """Record the last phase reached and watchdog retries issued."""
        call = await self.get_call(call_id)
        if call:
            call.phase = phase
            call.retries = retries
            await self.db.commit()
            await self.db.refresh(call)
        return call
