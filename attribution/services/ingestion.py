"""Event ingestion gateway.

Authenticates an inbound postback by its offer token and turns the house's
query/body parameters into one canonical event. Holds no state of its own:
every call works only with the offer row it loaded and the params it was
handed, so concurrent postbacks for any mix of offers never interfere.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Mapping

from pydantic import ValidationError
from sqlalchemy.orm import Session

from attribution.models.db import Offer
from attribution.models.db.enums import EventKind, EventSource
from attribution.models.schemas.events import (
    CanonicalEvent,
    ClickEvent,
    DepositEvent,
    RegistrationEvent,
)
from attribution.services.errors import InvalidPostback, OfferNotFound
from attribution.utils import get_logger
from attribution.utils.time import parse_event_timestamp, utc_now

logger = get_logger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")

# Required params per event kind; anything missing is a final 400.
REQUIRED_PARAMS: dict[EventKind, tuple[str, ...]] = {
    EventKind.CLICK: ("subid",),
    EventKind.REGISTRATION: ("subid", "customer_id"),
    EventKind.DEPOSIT: ("subid", "customer_id", "amount", "currency"),
}


def resolve_offer_by_token(db: Session, token: str) -> Offer:
    """Load the active offer owning ``token``.

    Unknown and inactive tokens raise the same OfferNotFound so probing cannot
    tell a retired token from a made-up one.
    """
    offer = None
    if token:
        offer = db.query(Offer).filter(Offer.postback_token == token).one_or_none()
    if offer is None or not offer.is_active:
        logger.warning(
            "Postback rejected: unknown or inactive token",
            token_prefix=token[:6] + "..." if len(token) > 6 else token,
            offer_id=offer.id if offer is not None else None,
        )
        raise OfferNotFound()
    return offer


def resolve_offer_for_legacy(db: Session, house_id: str | None, token: str | None) -> Offer:
    """Legacy generic endpoint: offer id plus its token, both required."""
    if not house_id or not token:
        raise OfferNotFound()
    offer = resolve_offer_by_token(db, token)
    if str(offer.id) != house_id.strip():
        logger.warning(
            "Legacy postback rejected: house id does not match token",
            house_id=house_id,
            offer_id=offer.id,
        )
        raise OfferNotFound()
    return offer


def parse_event_kind(raw: str | None) -> EventKind:
    try:
        return EventKind((raw or "").strip().lower())
    except ValueError:
        raise InvalidPostback("unsupported_event", f"Unsupported event type '{raw}'") from None


def _clean(params: Mapping[str, str], name: str) -> str | None:
    value = params.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_amount(raw: str) -> Decimal:
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise InvalidPostback("invalid_amount", f"Amount '{raw}' is not a number") from None
    if not amount.is_finite() or amount <= 0:
        raise InvalidPostback("invalid_amount", "Amount must be a positive number")
    if amount.as_tuple().exponent < -2:  # type: ignore[operator]
        raise InvalidPostback("invalid_amount", "Amount supports at most two decimal places")
    return amount


def _parse_click_id(raw: str | None) -> int | None:
    """Our own click id, when the house echoes it back.

    Houses also reuse the param for their own click references; those are
    not ours to convert, so they are ignored rather than rejected.
    """
    if raw is None:
        return None
    if not raw.isdigit() or int(raw) <= 0:
        logger.info("Ignoring click_id that is not a local click reference", click_id=raw[:64])
        return None
    return int(raw)


def normalize_postback(
    offer: Offer,
    kind: EventKind,
    params: Mapping[str, str],
    source: EventSource = EventSource.POSTBACK,
) -> CanonicalEvent:
    """Validate house params for ``kind`` and build the canonical event.

    Raises:
        InvalidPostback: a required param is missing or a value is malformed.
    """
    missing = [name for name in REQUIRED_PARAMS[kind] if _clean(params, name) is None]
    if missing:
        raise InvalidPostback(
            "missing_required_field",
            f"Missing required parameter(s) for {kind.value}: {', '.join(missing)}",
        )

    raw_timestamp = _clean(params, "timestamp")
    try:
        occurred_at = parse_event_timestamp(raw_timestamp) or utc_now()
    except ValueError:
        raise InvalidPostback("invalid_timestamp", f"Unparseable timestamp '{raw_timestamp}'") from None

    subid = _clean(params, "subid")
    customer_id = _clean(params, "customer_id")
    event_id = _clean(params, "event_id") or _clean(params, "transaction_id")
    if kind is EventKind.CLICK:
        # A house-reported click carries the house's own click reference.
        click_id = None
        external_click_id = _clean(params, "click_id") or event_id
    else:
        click_id = _parse_click_id(_clean(params, "click_id"))
        external_click_id = None

    try:
        if kind is EventKind.CLICK:
            return ClickEvent(
                offer_id=offer.id,
                subid=subid,
                occurred_at=occurred_at,
                source=source,
                external_customer_id=customer_id,
                external_click_id=external_click_id,
            )
        if kind is EventKind.REGISTRATION:
            return RegistrationEvent(
                offer_id=offer.id,
                subid=subid,
                occurred_at=occurred_at,
                source=source,
                click_id=click_id,
                external_customer_id=customer_id,
                email=_clean(params, "email"),
            )
        currency = _clean(params, "currency") or ""
        if not _CURRENCY_RE.match(currency):
            raise InvalidPostback("invalid_currency", "currency must be a 3-letter code")
        amount = _parse_amount(_clean(params, "amount") or "")
        # Without either, two real deposits of the same amount would share a key.
        if event_id is None and raw_timestamp is None:
            raise InvalidPostback(
                "missing_required_field",
                "Deposit needs an event_id (or transaction_id) or a timestamp",
            )
        return DepositEvent(
            offer_id=offer.id,
            subid=subid,
            occurred_at=occurred_at,
            source=source,
            click_id=click_id,
            external_customer_id=customer_id,
            amount=amount,
            currency=currency.upper(),
            external_event_id=event_id,
        )
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise InvalidPostback(
            "invalid_field",
            f"Invalid value for: {', '.join(fields) or 'payload'}",
        ) from None


__all__ = [
    "REQUIRED_PARAMS",
    "resolve_offer_by_token",
    "resolve_offer_for_legacy",
    "parse_event_kind",
    "normalize_postback",
]
