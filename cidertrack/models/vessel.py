import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from cidertrack.database import Base


class Vessel(Base):
    __tablename__ = "vessels"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # Short display code painted on the tank, e.g. "TK03", "FV01"
    name: Mapped[str | None] = mapped_column(String(50))
    capacity_l: Mapped[float] = mapped_column(Float, nullable=False)
    # available | fermenting | cleaning | maintenance
    status: Mapped[str] = mapped_column(String(30), default="available")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
