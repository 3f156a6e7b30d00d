"""Batch — a tracked quantity of juice/cider occupying one vessel.

A Batch is created from one vessel assignment when a press run is completed.
Every Batch traces back to its press run through ``origin_press_run_id`` and
to the fruit it was made from through its BatchComposition rows.

Lifecycle:  active → completed | cancelled
(transfers, measurements and completion are handled by cellar workflows)
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cidertrack.database import Base


class Batch(Base):
    __tablename__ = "batches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    vessel_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vessels.id"), nullable=False, index=True
    )

    # Human-readable name, e.g. "2025-09-19_TK03_GRAV_A"
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    batch_number: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── Volumes ──────────────────────────────────────────────
    initial_volume_l: Mapped[float] = mapped_column(Float, nullable=False)
    current_volume_l: Mapped[float] = mapped_column(Float, nullable=False)

    # ── Status ───────────────────────────────────────────────
    # active | completed | cancelled
    status: Mapped[str] = mapped_column(String(30), default="active", index=True)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # ── Origin traceability ──────────────────────────────────
    # Several batches share one press run (one per vessel), so this is
    # indexed but not unique.  See PressRunAllocation for the claim row.
    origin_press_run_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("press_runs.id"), index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # ── Relationships ────────────────────────────────────────
    vessel = relationship("Vessel")
    compositions = relationship(
        "BatchComposition", back_populates="batch",
        order_by="BatchComposition.created_at",
    )


class BatchComposition(Base):
    """Immutable per-purchase-line breakdown of a batch.

    Records how much of the batch's juice and material cost trace back to
    one purchase line.  Rows are historical allocation records: they are
    written once at press completion and never updated.
    """

    __tablename__ = "batch_compositions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("batches.id"), nullable=False, index=True
    )
    purchase_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("purchase_items.id"), nullable=False, index=True
    )
    vendor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vendors.id"), nullable=False
    )
    variety_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("fruit_varieties.id"), nullable=False
    )
    lot_code: Mapped[str | None] = mapped_column(String(50))

    input_weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    juice_volume_l: Mapped[float] = mapped_column(Float, nullable=False)
    fraction_of_batch: Mapped[float] = mapped_column(Float, nullable=False)
    material_cost: Mapped[float] = mapped_column(Float, nullable=False)
    avg_brix: Mapped[float | None] = mapped_column(Float)
    est_sugar_kg: Mapped[float | None] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    batch = relationship("Batch", back_populates="compositions")
