from .users import User
from .offers import Offer
from .affiliate_links import AffiliateLink
from .clicks import Click
from .registrations import Registration
from .deposits import Deposit
from .postback_events import PostbackEvent
from .enums import (
    UserRole,
    CommissionType,
    EventKind,
    EventSource,
    DepositStatus,
    EventOutcome,
)

__all__ = [
    "User",
    "Offer",
    "AffiliateLink",
    "Click",
    "Registration",
    "Deposit",
    "PostbackEvent",
    "UserRole",
    "CommissionType",
    "EventKind",
    "EventSource",
    "DepositStatus",
    "EventOutcome",
]
