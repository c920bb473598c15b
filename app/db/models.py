"""Database models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CallRecord(Base):
    """Audit record of one incoming realtime call."""

    __tablename__ = "call_records"

    id = Column(Integer, primary_key=True, index=True)
    call_id = Column(String, unique=True, index=True, nullable=False)
    # accepting, accepted, accept_failed, in_progress, completed, failed
    status = Column(String, default="accepting", nullable=False)
    phase = Column(String, default="init", nullable=False)
    accept_status_code = Column(Integer, nullable=True)
    retries = Column(Integer, default=0, nullable=False)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
