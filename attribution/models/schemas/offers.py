"""
Pydantic schemas for offer (betting house) administration.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator
from ..db.enums import CommissionType

class OfferCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    website_url: str = Field(min_length=1, pattern=r"^https?://")
    commission_type: CommissionType = CommissionType.CPA
    base_cpa_commission: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    base_revshare_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100, decimal_places=2)
    cookie_duration_days: int = Field(default=90, ge=1, le=3650)
    is_active: bool = True

    @model_validator(mode="after")
    def _terms_match_model(self) -> "OfferCreate":
        if self.commission_type.pays_cpa and self.base_cpa_commission <= 0:
            raise ValueError("base_cpa_commission must be positive for CPA and Hybrid offers")
        if self.commission_type.pays_revshare and self.base_revshare_percent <= 0:
            raise ValueError("base_revshare_percent must be positive for RevShare and Hybrid offers")
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "BetHouse",
            "website_url": "https://bethouse.example.com",
            "commission_type": "Hybrid",
            "base_cpa_commission": "100.00",
            "base_revshare_percent": "25.00",
            "cookie_duration_days": 90
        }
    })

class OfferUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    website_url: Optional[str] = Field(None, pattern=r"^https?://")
    commission_type: Optional[CommissionType] = None
    base_cpa_commission: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    base_revshare_percent: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)
    cookie_duration_days: Optional[int] = Field(None, ge=1, le=3650)
    is_active: Optional[bool] = None

class OfferRead(BaseModel):
    id: int
    name: str
    description: Optional[str]
    website_url: str
    commission_type: CommissionType
    base_cpa_commission: Decimal
    base_revshare_percent: Decimal
    cookie_duration_days: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class OfferAdminRead(OfferRead):
    """Admin view; includes the postback secret."""
    postback_token: str

class PostbackUrls(BaseModel):
    offer_id: int
    registration: str
    deposit: str
    click: str
    legacy: str
