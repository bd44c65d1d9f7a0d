from __future__ import annotations
"""SQLAlchemy model for recorded clicks."""
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .affiliate_links import AffiliateLink
from sqlalchemy.sql import func
from attribution.database import Base

class Click(Base):
    __tablename__ = "clicks"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    affiliate_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    link_id: Mapped[int] = mapped_column(Integer, ForeignKey("affiliate_links.id"), nullable=False, index=True)

    ip_address: Mapped[str] = mapped_column(String(45), default="")
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Only set for house-reported clicks carrying their own click reference.
    idempotency_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    converted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    timestamp: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    link: Mapped["AffiliateLink"] = relationship("AffiliateLink")
