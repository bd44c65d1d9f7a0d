"""Attribution resolver.

Maps a canonical event to the affiliate link that owns it. Link codes are
unique system-wide, so this is a direct unique-key lookup and never a
heuristic match.

Policy for deactivated links: conversions (registration / deposit) still
attribute, because the visitor clicked while the link was live and the house
may report late. New clicks on a deactivated link are rejected. There is no
server-side attribution-window cutoff for conversions; only the client cookie
expires.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from attribution.config import ATTRIBUTION_SETTINGS
from attribution.models.db import AffiliateLink
from attribution.models.schemas.events import CanonicalEvent, ClickEvent, DepositEvent, RegistrationEvent
from attribution.services.errors import InvalidPostback, UnattributableEvent
from attribution.utils import get_logger
from attribution.utils.time import ensure_aware, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class Attribution:
    affiliate_id: int
    offer_id: int
    link_id: int
    link_code: str
    link_active: bool


def check_event_time(event: CanonicalEvent, now: datetime | None = None) -> None:
    """Reject events stamped implausibly far in the future."""
    now = now or utc_now()
    skew = timedelta(seconds=int(ATTRIBUTION_SETTINGS["max_future_skew_seconds"]))
    if ensure_aware(event.occurred_at) > now + skew:
        raise InvalidPostback(
            "timestamp_in_future",
            f"Event timestamp {event.occurred_at.isoformat()} is in the future",
        )


def resolve_attribution(db: Session, event: CanonicalEvent, now: datetime | None = None) -> Attribution:
    """Find the owning affiliate link for ``event``.

    Raises:
        InvalidPostback: timestamp is in the future.
        UnattributableEvent: the subid does not exist, belongs to another
            offer, or is a click on a deactivated link.
    """
    check_event_time(event, now)

    link = db.query(AffiliateLink).filter(AffiliateLink.link_code == event.subid).one_or_none()
    if link is None:
        raise UnattributableEvent("unknown_subid", f"No affiliate link with code '{event.subid}'")

    if link.offer_id != event.offer_id:
        logger.warning(
            "Subid belongs to a different offer",
            subid=event.subid,
            link_offer_id=link.offer_id,
            event_offer_id=event.offer_id,
        )
        raise UnattributableEvent("subid_offer_mismatch", "Affiliate link does not belong to this offer")

    if isinstance(event, ClickEvent):
        if not link.is_active:
            raise UnattributableEvent("link_inactive", "Affiliate link is no longer active")
    elif isinstance(event, (RegistrationEvent, DepositEvent)):
        if not link.is_active:
            logger.info(
                "Attributing conversion to deactivated link",
                link_id=link.id,
                kind=event.kind.value,
                subid=event.subid,
            )
    else:  # pragma: no cover - union is closed
        raise TypeError(f"Unsupported event type {type(event).__name__}")

    return Attribution(
        affiliate_id=link.affiliate_id,
        offer_id=link.offer_id,
        link_id=link.id,
        link_code=link.link_code,
        link_active=link.is_active,
    )


__all__ = ["Attribution", "check_event_time", "resolve_attribution"]
