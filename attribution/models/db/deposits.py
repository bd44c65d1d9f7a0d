from __future__ import annotations
"""SQLAlchemy model for deposits reported by houses."""
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Numeric, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .registrations import Registration
from sqlalchemy.sql import func
from attribution.database import Base
from .enums import DepositStatus

class Deposit(Base):
    __tablename__ = "deposits"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # Nullable: a deposit may land before its registration; linked later by
    # (offer_id, external_customer_id).
    registration_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("registrations.id"), nullable=True, index=True)
    affiliate_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    offer_id: Mapped[int] = mapped_column(Integer, ForeignKey("offers.id"), nullable=False)
    link_id: Mapped[int] = mapped_column(Integer, ForeignKey("affiliate_links.id"), nullable=False, index=True)
    external_customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_reference: Mapped[str] = mapped_column(String(255), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[DepositStatus] = mapped_column(Enum(DepositStatus), default=DepositStatus.PENDING, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    timestamp: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    registration: Mapped["Registration | None"] = relationship("Registration", back_populates="deposits")

    __table_args__ = (
        Index("ix_deposits_offer_customer", "offer_id", "external_customer_id"),
    )
