from .base import ResponseBase
from .events import (
    CanonicalEvent,
    ClickEvent,
    RegistrationEvent,
    DepositEvent,
    build_idempotency_key,
)
from .offers import OfferCreate, OfferUpdate, OfferRead, OfferAdminRead, PostbackUrls
from .links import AffiliateLinkCreate, AffiliateLinkUpdate, AffiliateLinkRead, LedgerCheck, AffiliateStats
from .users import UserCreate, UserRead
from .tracking import AttributionClaims, TrackingRegistration, TrackingDeposit

__all__ = [
    "ResponseBase",
    # Canonical events
    "CanonicalEvent",
    "ClickEvent",
    "RegistrationEvent",
    "DepositEvent",
    "build_idempotency_key",
    # Offers
    "OfferCreate",
    "OfferUpdate",
    "OfferRead",
    "OfferAdminRead",
    "PostbackUrls",
    # Links
    "AffiliateLinkCreate",
    "AffiliateLinkUpdate",
    "AffiliateLinkRead",
    "LedgerCheck",
    "AffiliateStats",
    # Users
    "UserCreate",
    "UserRead",
    # Tracking
    "AttributionClaims",
    "TrackingRegistration",
    "TrackingDeposit",
]
