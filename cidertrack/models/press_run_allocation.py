"""PressRunAllocation: the claim row for a processed press run.

Exactly one row per press run that has been turned into batches, written in
the same transaction as the batches themselves.  The unique constraint on
``press_run_id`` is the database-level guarantee that a press run is never
allocated twice, even if two requests pass the existence check concurrently.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cidertrack.database import Base


class PressRunAllocation(Base):
    __tablename__ = "press_run_allocations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    press_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("press_runs.id"), nullable=False, unique=True
    )
    # weight | sugar
    allocation_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    total_assigned_l: Mapped[float] = mapped_column(Float, nullable=False)
    batch_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
