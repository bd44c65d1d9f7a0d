from __future__ import annotations
"""SQLAlchemy model for the append-only audit log of ingested events."""
from decimal import Decimal
from sqlalchemy import Integer, String, DateTime, Numeric, Enum, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from attribution.database import Base
from .enums import EventKind, EventOutcome, EventSource

class PostbackEvent(Base):
    __tablename__ = "postback_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # No foreign keys: unattributable events reference links that do not exist.
    offer_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    affiliate_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    link_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    kind: Mapped[EventKind] = mapped_column(Enum(EventKind), nullable=False)
    source: Mapped[EventSource] = mapped_column(Enum(EventSource), nullable=False)
    outcome: Mapped[EventOutcome] = mapped_column(Enum(EventOutcome), nullable=False, index=True)
    subid: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    external_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    commission_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    raw_params: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    received_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())
