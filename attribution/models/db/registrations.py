from __future__ import annotations
"""SQLAlchemy model for customer registrations reported by houses."""
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Boolean, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .deposits import Deposit
from sqlalchemy.sql import func
from attribution.database import Base

class Registration(Base):
    __tablename__ = "registrations"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    affiliate_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    offer_id: Mapped[int] = mapped_column(Integer, ForeignKey("offers.id"), nullable=False, index=True)
    link_id: Mapped[int] = mapped_column(Integer, ForeignKey("affiliate_links.id"), nullable=False, index=True)

    external_customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deposited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Snapshot of the CPA paid at registration time (0 for RevShare-only offers).
    cpa_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    timestamp: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    deposits: Mapped[list["Deposit"]] = relationship("Deposit", back_populates="registration")

    # One registration per customer per offer; the insert itself is the dedup check.
    __table_args__ = (
        UniqueConstraint("offer_id", "external_customer_id", name="unique_registration_per_offer_customer"),
    )
