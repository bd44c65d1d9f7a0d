"""Commission engine.

Computes commission for attributed registrations and deposits and records
exactly one row per real-world event. The existence check *is* the insert:
the row carries a unique idempotency key, so when two deliveries of the same
event race, the database lets one insert through and the other fails with an
IntegrityError, which is turned into a "duplicate" outcome carrying the
original record's figures. Nothing is recomputed or re-credited for a
duplicate.

Commission models:
    CPA      flat ``base_cpa_commission`` on the first registration per customer
    RevShare ``amount * base_revshare_percent / 100`` on every deposit
    Hybrid   both of the above, independently
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attribution.models.db import Deposit, Offer, Registration
from attribution.models.db.enums import DepositStatus, EventKind
from attribution.models.schemas.events import DepositEvent, RegistrationEvent
from attribution.services.attribution import Attribution
from attribution.services.errors import InvalidPostback
from attribution.utils import get_logger
from attribution.utils.metrics import to_money

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommissionOutcome:
    kind: EventKind
    record_id: int
    commission: Decimal
    duplicate: bool
    affiliate_id: int
    link_id: int
    registration_id: int | None = None


def registration_commission(offer: Offer) -> Decimal:
    if not offer.commission_type.pays_cpa:
        return Decimal("0.00")
    return to_money(offer.base_cpa_commission)


def deposit_commission(offer: Offer, amount: Decimal) -> Decimal:
    if amount <= 0:
        raise InvalidPostback("invalid_amount", "Deposit amount must be positive")
    if not offer.commission_type.pays_revshare:
        return Decimal("0.00")
    return to_money(Decimal(amount) * Decimal(str(offer.base_revshare_percent)) / Decimal(100))


def _check_offer(offer: Offer, event_offer_id: int) -> None:
    if offer.id != event_offer_id:
        raise InvalidPostback("offer_mismatch", "Event does not belong to this offer")


def record_registration(
    db: Session,
    offer: Offer,
    event: RegistrationEvent,
    attribution: Attribution,
) -> CommissionOutcome:
    """Insert the registration (or detect it already exists). Does not commit.

    Must be the first write of the caller's transaction: on a duplicate the
    whole transaction is rolled back before the existing row is loaded.
    """
    _check_offer(offer, event.offer_id)
    commission = registration_commission(offer)
    registration = Registration(
        affiliate_id=attribution.affiliate_id,
        offer_id=offer.id,
        link_id=attribution.link_id,
        external_customer_id=event.external_customer_id,
        email=event.email,
        cpa_commission=commission,
        idempotency_key=event.idempotency_key,
        timestamp=event.occurred_at,
    )
    try:
        db.add(registration)
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = db.query(Registration).filter(
            Registration.offer_id == offer.id,
            Registration.external_customer_id == event.external_customer_id,
        ).one()
        logger.info(
            "Duplicate registration ignored",
            registration_id=existing.id,
            offer_id=offer.id,
            customer_id=event.external_customer_id,
        )
        return CommissionOutcome(
            kind=EventKind.REGISTRATION,
            record_id=existing.id,
            commission=to_money(existing.cpa_commission),
            duplicate=True,
            affiliate_id=existing.affiliate_id,
            link_id=existing.link_id,
            registration_id=existing.id,
        )

    # Deposits that arrived first are linked now by (offer, customer).
    linked = db.execute(
        update(Deposit)
        .where(
            Deposit.offer_id == offer.id,
            Deposit.external_customer_id == event.external_customer_id,
            Deposit.registration_id.is_(None),
        )
        .values(registration_id=registration.id)
        .execution_options(synchronize_session=False)
    ).rowcount
    if linked:
        registration.deposited = True
        logger.info(
            "Linked early deposits to new registration",
            registration_id=registration.id,
            deposits_linked=linked,
        )

    return CommissionOutcome(
        kind=EventKind.REGISTRATION,
        record_id=registration.id,
        commission=commission,
        duplicate=False,
        affiliate_id=attribution.affiliate_id,
        link_id=attribution.link_id,
        registration_id=registration.id,
    )


def record_deposit(
    db: Session,
    offer: Offer,
    event: DepositEvent,
    attribution: Attribution,
) -> CommissionOutcome:
    """Insert the deposit (or detect it already exists). Does not commit.

    A deposit whose registration has not landed yet is stored unlinked and
    picked up by the registration when it arrives.
    """
    _check_offer(offer, event.offer_id)
    commission = deposit_commission(offer, event.amount)
    registration = db.query(Registration).filter(
        Registration.offer_id == offer.id,
        Registration.external_customer_id == event.external_customer_id,
    ).one_or_none()
    registration_id = registration.id if registration is not None else None

    deposit = Deposit(
        registration_id=registration_id,
        affiliate_id=attribution.affiliate_id,
        offer_id=offer.id,
        link_id=attribution.link_id,
        external_customer_id=event.external_customer_id,
        external_reference=event.external_reference,
        amount=to_money(event.amount),
        currency=event.currency,
        commission_amount=commission,
        status=DepositStatus.CONFIRMED,
        idempotency_key=event.idempotency_key,
        timestamp=event.occurred_at,
    )
    try:
        db.add(deposit)
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = db.query(Deposit).filter(Deposit.idempotency_key == event.idempotency_key).one()
        logger.info(
            "Duplicate deposit ignored",
            deposit_id=existing.id,
            offer_id=offer.id,
            customer_id=event.external_customer_id,
        )
        return CommissionOutcome(
            kind=EventKind.DEPOSIT,
            record_id=existing.id,
            commission=to_money(existing.commission_amount),
            duplicate=True,
            affiliate_id=existing.affiliate_id,
            link_id=existing.link_id,
            registration_id=existing.registration_id,
        )

    if registration_id is not None:
        db.execute(
            update(Registration)
            .where(Registration.id == registration_id, Registration.deposited.is_(False))
            .values(deposited=True)
            .execution_options(synchronize_session=False)
        )
    else:
        logger.info(
            "Deposit recorded before its registration",
            deposit_id=deposit.id,
            offer_id=offer.id,
            customer_id=event.external_customer_id,
        )

    return CommissionOutcome(
        kind=EventKind.DEPOSIT,
        record_id=deposit.id,
        commission=commission,
        duplicate=False,
        affiliate_id=attribution.affiliate_id,
        link_id=attribution.link_id,
        registration_id=registration_id,
    )


__all__ = [
    "CommissionOutcome",
    "registration_commission",
    "deposit_commission",
    "record_registration",
    "record_deposit",
]
