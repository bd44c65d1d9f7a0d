from __future__ import annotations
"""SQLAlchemy model for affiliate links (the link registry) and their running totals."""
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Boolean, Numeric, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
    from .offers import Offer
from sqlalchemy.sql import func
from attribution.database import Base

class AffiliateLink(Base):
    __tablename__ = "affiliate_links"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    affiliate_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    offer_id: Mapped[int] = mapped_column(Integer, ForeignKey("offers.id"), nullable=False, index=True)

    # System-wide unique; doubles as the subid houses echo back in postbacks.
    link_code: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    full_url: Mapped[str] = mapped_column(Text, nullable=False)
    custom_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    campaign: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Aggregates: only ever changed through in-place UPDATE increments (services.ledger).
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    affiliate: Mapped["User"] = relationship("User", back_populates="links")
    offer: Mapped["Offer"] = relationship("Offer", back_populates="links")
