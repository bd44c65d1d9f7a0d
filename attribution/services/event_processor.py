"""Event pipeline orchestrator.

Single public entry point ``process_event(db, offer, event)`` used by every
ingestion path:

1. Resolve attribution (unknown subid -> audited, 404-class failure).
2. Record the click / registration / deposit row; a unique-key conflict means
   the event was already processed and becomes a no-op "duplicate".
3. Apply ledger credits (link totals + affiliate balance) with in-place
   increments in the same transaction as the row insert.
4. Append an audit row and commit once.

Storage failures roll everything back and surface as TransientStorageError so
the house's own redelivery retries; nothing is retried internally.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from attribution.models.db import Click, Offer, PostbackEvent
from attribution.models.db.enums import EventKind, EventOutcome, EventSource
from attribution.models.schemas.events import CanonicalEvent, ClickEvent, DepositEvent, RegistrationEvent
from attribution.services import ledger
from attribution.services.attribution import Attribution, resolve_attribution
from attribution.services.commission import CommissionOutcome, record_deposit, record_registration
from attribution.services.errors import AttributionError, InvalidPostback, TransientStorageError, UnattributableEvent
from attribution.services.tracking import mark_click_converted, record_click
from attribution.utils import get_logger, log_business_event

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str = ""
    user_agent: Optional[str] = None
    referrer: Optional[str] = None


@dataclass(frozen=True)
class ProcessingResult:
    kind: EventKind
    outcome: EventOutcome
    record_id: int
    commission: Decimal
    affiliate_id: int
    link_id: int
    click_converted: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def duplicate(self) -> bool:
        return self.outcome is EventOutcome.DUPLICATE

    def as_response_data(self) -> Dict[str, Any]:
        return {
            "event": self.kind.value,
            "duplicate": self.duplicate,
            "record_id": self.record_id,
            "commission": str(self.commission),
            "link_id": self.link_id,
            **self.extra,
        }


def _audit(
    db: Session,
    *,
    kind: EventKind,
    source: EventSource,
    outcome: EventOutcome,
    offer_id: Optional[int],
    subid: Optional[str] = None,
    customer_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    attribution: Optional[Attribution] = None,
    commission: Optional[Decimal] = None,
    reason: Optional[str] = None,
    raw_params: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
) -> None:
    db.add(PostbackEvent(
        offer_id=offer_id,
        affiliate_id=attribution.affiliate_id if attribution else None,
        link_id=attribution.link_id if attribution else None,
        kind=kind,
        source=source,
        outcome=outcome,
        subid=subid[:100] if subid else None,
        external_customer_id=customer_id,
        idempotency_key=idempotency_key,
        commission_amount=commission,
        reason=reason,
        raw_params=dict(raw_params) if raw_params else None,
        request_id=request_id,
    ))


def record_rejected_postback(
    db: Session,
    *,
    offer_id: Optional[int],
    kind: EventKind,
    source: EventSource,
    error: AttributionError,
    raw_params: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
) -> None:
    """Audit a postback refused before it became a canonical event."""
    try:
        _audit(
            db,
            kind=kind,
            source=source,
            outcome=EventOutcome.REJECTED,
            offer_id=offer_id,
            subid=(raw_params or {}).get("subid"),
            customer_id=(raw_params or {}).get("customer_id"),
            reason=error.reason,
            raw_params=raw_params,
            request_id=request_id,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to audit rejected postback", error=str(exc), request_id=request_id, exc_info=True)
        raise TransientStorageError() from exc
    log_business_event(
        event_type="postback_rejected",
        details={"offer_id": offer_id, "event": kind.value, "reason": error.reason},
        request_id=request_id,
    )


def _process_click(db: Session, event: ClickEvent, attribution: Attribution, client: ClientInfo) -> ProcessingResult:
    try:
        click = record_click(
            db,
            attribution,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            referrer=client.referrer,
            idempotency_key=event.idempotency_key,
            occurred_at=event.occurred_at,
        )
    except IntegrityError:
        db.rollback()
        existing = db.query(Click).filter(Click.idempotency_key == event.idempotency_key).one()
        return ProcessingResult(
            kind=EventKind.CLICK,
            outcome=EventOutcome.DUPLICATE,
            record_id=existing.id,
            commission=Decimal("0.00"),
            affiliate_id=existing.affiliate_id,
            link_id=existing.link_id,
        )
    ledger.increment_clicks(db, attribution.link_id)
    return ProcessingResult(
        kind=EventKind.CLICK,
        outcome=EventOutcome.CREDITED,
        record_id=click.id,
        commission=Decimal("0.00"),
        affiliate_id=attribution.affiliate_id,
        link_id=attribution.link_id,
    )


def _from_commission(outcome: CommissionOutcome, click_converted: bool = False) -> ProcessingResult:
    extra: Dict[str, Any] = {}
    if outcome.registration_id is not None:
        extra["registration_id"] = outcome.registration_id
    return ProcessingResult(
        kind=outcome.kind,
        outcome=EventOutcome.DUPLICATE if outcome.duplicate else EventOutcome.CREDITED,
        record_id=outcome.record_id,
        commission=outcome.commission,
        affiliate_id=outcome.affiliate_id,
        link_id=outcome.link_id,
        click_converted=click_converted,
        extra=extra,
    )


def _process_conversion(
    db: Session,
    offer: Offer,
    event: RegistrationEvent | DepositEvent,
    attribution: Attribution,
) -> ProcessingResult:
    if isinstance(event, RegistrationEvent):
        outcome = record_registration(db, offer, event, attribution)
        counts_as_conversion = True
    else:
        outcome = record_deposit(db, offer, event, attribution)
        counts_as_conversion = False

    if outcome.duplicate:
        return _from_commission(outcome)

    ledger.apply_credit(
        db,
        affiliate_id=attribution.affiliate_id,
        link_id=attribution.link_id,
        commission=outcome.commission,
        conversion=counts_as_conversion,
    )
    converted = False
    if counts_as_conversion and event.click_id is not None:
        converted = mark_click_converted(db, event.click_id, attribution.link_id)
    return _from_commission(outcome, click_converted=converted)


def process_event(
    db: Session,
    offer: Offer,
    event: CanonicalEvent,
    *,
    client: Optional[ClientInfo] = None,
    raw_params: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
) -> ProcessingResult:
    """Attribute, record and credit one canonical event, exactly once.

    Raises:
        InvalidPostback: event rejected on content (e.g. future timestamp).
        UnattributableEvent: no affiliate link owns the event.
        TransientStorageError: the database failed; nothing was written.
    """
    client = client or ClientInfo()
    offer_id = offer.id
    audit_fields: Dict[str, Any] = {
        "kind": event.kind,
        "source": event.source,
        "offer_id": offer_id,
        "subid": event.subid,
        "customer_id": event.external_customer_id,
        "idempotency_key": event.idempotency_key,
        "raw_params": raw_params,
        "request_id": request_id,
    }

    try:
        try:
            attribution = resolve_attribution(db, event)
        except (UnattributableEvent, InvalidPostback) as exc:
            db.rollback()
            outcome = EventOutcome.UNATTRIBUTABLE if isinstance(exc, UnattributableEvent) else EventOutcome.REJECTED
            _audit(db, outcome=outcome, reason=exc.reason, **audit_fields)
            db.commit()
            logger.warning(
                "Event not attributed",
                offer_id=offer_id,
                event=event.kind.value,
                subid=event.subid,
                reason=exc.reason,
                request_id=request_id,
            )
            log_business_event(
                event_type="event_unattributable" if outcome is EventOutcome.UNATTRIBUTABLE else "postback_rejected",
                details={"offer_id": offer_id, "event": event.kind.value, "subid": event.subid, "reason": exc.reason},
                request_id=request_id,
            )
            raise

        if isinstance(event, ClickEvent):
            result = _process_click(db, event, attribution, client)
        elif isinstance(event, (RegistrationEvent, DepositEvent)):
            result = _process_conversion(db, offer, event, attribution)
        else:  # pragma: no cover - union is closed
            raise TypeError(f"Unsupported event type {type(event).__name__}")

        _audit(
            db,
            outcome=result.outcome,
            attribution=attribution,
            commission=result.commission,
            **audit_fields,
        )
        db.commit()
    except AttributionError:
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Storage failure while processing event",
            offer_id=offer_id,
            event=event.kind.value,
            subid=event.subid,
            error=str(exc),
            request_id=request_id,
            exc_info=True,
        )
        raise TransientStorageError() from exc

    log_business_event(
        event_type="postback_duplicate" if result.duplicate else "commission_credited",
        details={
            "offer_id": offer_id,
            "event": result.kind.value,
            "link_id": result.link_id,
            "record_id": result.record_id,
            "commission": result.commission,
            "source": event.source.value,
        },
        user_id=result.affiliate_id,
        request_id=request_id,
    )
    return result


__all__ = ["ClientInfo", "ProcessingResult", "process_event", "record_rejected_postback"]
