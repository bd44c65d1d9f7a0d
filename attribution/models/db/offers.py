from __future__ import annotations
"""SQLAlchemy model for offers (betting houses) and their commission terms."""
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Boolean, Numeric, Enum
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .affiliate_links import AffiliateLink
from sqlalchemy.sql import func
from attribution.database import Base
from .enums import CommissionType

class Offer(Base):
    __tablename__ = "offers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    website_url: Mapped[str] = mapped_column(Text, nullable=False)

    commission_type: Mapped[CommissionType] = mapped_column(Enum(CommissionType), default=CommissionType.CPA, nullable=False)
    base_cpa_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    base_revshare_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    cookie_duration_days: Mapped[int] = mapped_column(Integer, default=90, nullable=False)

    # Secret path segment of this offer's postback URLs; rotating it kills old URLs.
    postback_token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    links: Mapped[list["AffiliateLink"]] = relationship("AffiliateLink", back_populates="offer")
