"""
Pydantic schemas for first-party tracking calls and the attribution cookie.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

class AttributionClaims(BaseModel):
    """Contents of the signed attribution cookie."""
    affiliate_id: int
    offer_id: int
    link_id: int
    link_code: str
    click_id: Optional[int] = None
    issued_at: datetime
    expires_at: datetime

class TrackingRegistration(BaseModel):
    customer_id: str = Field(min_length=1, max_length=255, description="House-side customer/username")
    email: Optional[str] = Field(None, max_length=255)

class TrackingDeposit(BaseModel):
    customer_id: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    event_id: Optional[str] = Field(None, max_length=255)
