"""Ledger / aggregate updater.

All aggregate changes are single in-place UPDATE statements
(``col = col + :delta``) issued inside the caller's transaction, so concurrent
credits to one link serialize in the database without an application lock
and commit or roll back together with the row that justified them.
"""
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from attribution.models.db import AffiliateLink, Deposit, Registration, User
from attribution.models.db.enums import DepositStatus
from attribution.models.schemas.links import LedgerCheck
from attribution.utils.metrics import to_money


def increment_clicks(db: Session, link_id: int) -> None:
    db.execute(
        update(AffiliateLink)
        .where(AffiliateLink.id == link_id)
        .values(clicks=AffiliateLink.clicks + 1)
        .execution_options(synchronize_session=False)
    )


def credit_link(db: Session, link_id: int, commission: Decimal, conversions: int = 0) -> None:
    if commission == 0 and conversions == 0:
        return
    db.execute(
        update(AffiliateLink)
        .where(AffiliateLink.id == link_id)
        .values(
            total_commission=AffiliateLink.total_commission + commission,
            conversions=AffiliateLink.conversions + conversions,
        )
        .execution_options(synchronize_session=False)
    )


def credit_affiliate(db: Session, affiliate_id: int, commission: Decimal) -> None:
    """Credit lifetime commission and the withdrawable balance."""
    if commission == 0:
        return
    db.execute(
        update(User)
        .where(User.id == affiliate_id)
        .values(
            total_commission=User.total_commission + commission,
            available_balance=User.available_balance + commission,
        )
        .execution_options(synchronize_session=False)
    )


def apply_credit(
    db: Session,
    *,
    affiliate_id: int,
    link_id: int,
    commission: Decimal,
    conversion: bool,
) -> None:
    """Credit link and affiliate for one recorded event (no commit)."""
    credit_link(db, link_id, commission, conversions=1 if conversion else 0)
    credit_affiliate(db, affiliate_id, commission)


def check_link_ledger(db: Session, link: AffiliateLink) -> LedgerCheck:
    """Recompute a link's commission from source rows and compare with the stored total."""
    registrations_total = db.execute(
        select(func.coalesce(func.sum(Registration.cpa_commission), 0)).where(Registration.link_id == link.id)
    ).scalar_one()
    deposits_total = db.execute(
        select(func.coalesce(func.sum(Deposit.commission_amount), 0)).where(
            Deposit.link_id == link.id,
            Deposit.status == DepositStatus.CONFIRMED,
        )
    ).scalar_one()

    stored = to_money(link.total_commission)
    from_registrations = to_money(registrations_total)
    from_deposits = to_money(deposits_total)
    recomputed = from_registrations + from_deposits
    return LedgerCheck(
        link_id=link.id,
        stored_total_commission=stored,
        registrations_commission=from_registrations,
        deposits_commission=from_deposits,
        recomputed_total_commission=recomputed,
        consistent=stored == recomputed,
    )


__all__ = ["increment_clicks", "credit_link", "credit_affiliate", "apply_credit", "check_link_ledger"]
