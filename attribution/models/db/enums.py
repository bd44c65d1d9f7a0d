"""Central Enum definitions for attribution domain states.

These replace scattered string literals so DB models, schemas and the
event pipeline agree on one spelling.
"""
from __future__ import annotations
import enum


class UserRole(str, enum.Enum):
    AFFILIATE = "AFFILIATE"
    ADMIN = "ADMIN"


class CommissionType(str, enum.Enum):
    CPA = "CPA"
    REVSHARE = "RevShare"
    HYBRID = "Hybrid"

    @property
    def pays_cpa(self) -> bool:
        return self in (CommissionType.CPA, CommissionType.HYBRID)

    @property
    def pays_revshare(self) -> bool:
        return self in (CommissionType.REVSHARE, CommissionType.HYBRID)


class EventKind(str, enum.Enum):
    CLICK = "click"
    REGISTRATION = "registration"
    DEPOSIT = "deposit"


class EventSource(str, enum.Enum):
    POSTBACK = "postback"
    LEGACY_POSTBACK = "legacy_postback"
    FIRST_PARTY = "first_party"


class DepositStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class EventOutcome(str, enum.Enum):
    CREDITED = "credited"
    DUPLICATE = "duplicate"
    UNATTRIBUTABLE = "unattributable"
    REJECTED = "rejected"


__all__ = [
    "UserRole",
    "CommissionType",
    "EventKind",
    "EventSource",
    "DepositStatus",
    "EventOutcome",
]
