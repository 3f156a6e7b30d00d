"""Procurement records: vendors, fruit varieties, purchases and their lines.

These tables are owned by the purchasing workflow.  The press-completion
service only reads them to trace juice back to the fruit it came from.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cidertrack.database import Base


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class FruitVariety(Base):
    __tablename__ = "fruit_varieties"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    # apple | pear | quince
    fruit_type: Mapped[str] = mapped_column(String(30), default="apple")


class Purchase(Base):
    __tablename__ = "purchases"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    vendor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vendors.id"), nullable=False, index=True
    )
    purchase_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    vendor = relationship("Vendor")
    items = relationship("PurchaseItem", back_populates="purchase")


class PurchaseItem(Base):
    """One purchased lot of fruit (a purchase line)."""

    __tablename__ = "purchase_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    purchase_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("purchases.id"), nullable=False, index=True
    )
    fruit_variety_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("fruit_varieties.id"), nullable=False
    )

    quantity_kg: Mapped[float] = mapped_column(Float, nullable=False)
    price_per_unit: Mapped[float | None] = mapped_column(Float)
    total_cost: Mapped[float | None] = mapped_column(Float)
    lot_code: Mapped[str | None] = mapped_column(String(50))

    purchase = relationship("Purchase", back_populates="items")
    variety = relationship("FruitVariety")
