"""
Pydantic schemas for the affiliate link registry and ledger views.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

class AffiliateLinkCreate(BaseModel):
    offer_id: int = Field(gt=0)
    custom_name: Optional[str] = Field(None, max_length=255)
    campaign: Optional[str] = Field(None, max_length=100)

class AffiliateLinkUpdate(BaseModel):
    custom_name: Optional[str] = Field(None, max_length=255)
    campaign: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None

class AffiliateLinkRead(BaseModel):
    id: int
    affiliate_id: int
    offer_id: int
    link_code: str
    full_url: str
    custom_name: Optional[str]
    campaign: Optional[str]
    is_active: bool
    clicks: int
    conversions: int
    total_commission: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class LedgerCheck(BaseModel):
    link_id: int
    stored_total_commission: Decimal
    registrations_commission: Decimal
    deposits_commission: Decimal
    recomputed_total_commission: Decimal
    consistent: bool

class AffiliateStats(BaseModel):
    total_clicks: int
    total_conversions: int
    total_commission: Decimal
    active_links: int
    conversion_rate_pct: float
    available_balance: Decimal
