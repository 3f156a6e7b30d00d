"""PressRun — one completed pressing event.

A press run consumes fruit from one or more purchase lines (via PressItem)
and yields a known total volume of juice.  Completion of the run itself
happens upstream; this service only turns a completed run into batches.

Lifecycle:  in_progress → completed
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cidertrack.database import Base


class PressRun(Base):
    __tablename__ = "press_runs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(30), default="completed", index=True)
    total_juice_produced_l: Mapped[float] = mapped_column(Float, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    items = relationship("PressItem", back_populates="press_run")


class PressItem(Base):
    """A press line: how much of one purchase line went into the press."""

    __tablename__ = "press_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    press_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("press_runs.id"), nullable=False, index=True
    )
    purchase_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("purchase_items.id"), nullable=False, index=True
    )
    quantity_used_kg: Mapped[float] = mapped_column(Float, nullable=False)
    # Sugar reading of the fruit at pressing (°Brix ≈ % sugar by weight)
    brix_measured: Mapped[float | None] = mapped_column(Float)

    press_run = relationship("PressRun", back_populates="items")
    purchase_item = relationship("PurchaseItem")
