"""Link registry and tracking cookie issuer.

Resolves link codes, records clicks, and issues the signed attribution token
stored client-side in the tracking cookie. The token binds the visitor to
(affiliate, offer, link) for the offer's cookie duration; the server keeps no
copy of it.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from jose import JWTError, jwt
from sqlalchemy import update
from sqlalchemy.orm import Session

from attribution.config import ATTRIBUTION_SETTINGS, LINK_SETTINGS, PUBLIC_BASE_URL, SECURITY_SETTINGS
from attribution.models.db import AffiliateLink, Click, Offer
from attribution.models.schemas.tracking import AttributionClaims
from attribution.services.attribution import Attribution
from attribution.utils import get_logger
from attribution.utils.time import utc_now

logger = get_logger(__name__)

_TOKEN_TYPE = "affiliate_attribution"


# ----------------------------- Link registry ------------------------------ #

def generate_link_code() -> str:
    length = int(LINK_SETTINGS["link_code_length"])
    return secrets.token_urlsafe(length)[:length]


def generate_postback_token() -> str:
    return secrets.token_urlsafe(int(LINK_SETTINGS["postback_token_bytes"]))


def link_full_url(link_code: str) -> str:
    return f"{PUBLIC_BASE_URL}/ref/{link_code}"


def get_link_for_click(db: Session, link_code: str) -> tuple[AffiliateLink, Offer] | None:
    """Active link with an active offer, or None. Only new traffic is gated on activity."""
    link = db.query(AffiliateLink).filter(AffiliateLink.link_code == link_code).one_or_none()
    if link is None or not link.is_active:
        return None
    offer = link.offer
    if offer is None or not offer.is_active:
        return None
    return link, offer


def destination_url(website_url: str, link_code: str, click_id: int) -> str:
    """Offer URL with subid and click_id appended, keeping existing query params."""
    parts = urlsplit(website_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query = [(k, v) for k, v in query if k not in {"subid", "click_id"}]
    query.extend([("subid", link_code), ("click_id", str(click_id))])
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


# --------------------------------- Clicks --------------------------------- #

def record_click(
    db: Session,
    attribution: Attribution,
    *,
    ip_address: str = "",
    user_agent: Optional[str] = None,
    referrer: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> Click:
    """Insert a click row (no commit). Caller increments the link click count."""
    click = Click(
        affiliate_id=attribution.affiliate_id,
        link_id=attribution.link_id,
        ip_address=(ip_address or "")[:45],
        user_agent=user_agent,
        referrer=referrer,
        idempotency_key=idempotency_key,
    )
    if occurred_at is not None:
        click.timestamp = occurred_at  # type: ignore[assignment]
    db.add(click)
    db.flush()
    return click


def mark_click_converted(db: Session, click_id: int, link_id: int) -> bool:
    """Flip ``converted`` once; only for a click of the same link."""
    result = db.execute(
        update(Click)
        .where(Click.id == click_id, Click.link_id == link_id, Click.converted.is_(False))
        .values(converted=True)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


# ----------------------------- Cookie tokens ------------------------------ #

def cookie_max_age_seconds(offer: Offer) -> int:
    days = offer.cookie_duration_days or int(ATTRIBUTION_SETTINGS["default_cookie_duration_days"])
    return int(days) * 24 * 60 * 60


def issue_attribution_token(
    link: AffiliateLink,
    offer: Offer,
    click_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[str, int]:
    """Sign the attribution claims. Returns (token, max_age_seconds)."""
    issued_at = now or utc_now()
    max_age = cookie_max_age_seconds(offer)
    expires_at = issued_at + timedelta(seconds=max_age)
    payload = {
        "typ": _TOKEN_TYPE,
        "sub": str(link.affiliate_id),
        "offer_id": offer.id,
        "link_id": link.id,
        "link_code": link.link_code,
        "click_id": click_id,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, SECURITY_SETTINGS["secret_key"], algorithm=SECURITY_SETTINGS["algorithm"])
    return token, max_age


def decode_attribution_token(token: str) -> Optional[AttributionClaims]:
    """Verify signature and expiry; None for anything tampered, expired or foreign."""
    try:
        payload = jwt.decode(token, SECURITY_SETTINGS["secret_key"], algorithms=[SECURITY_SETTINGS["algorithm"]])
    except JWTError as exc:
        logger.info("Attribution cookie rejected", error=str(exc))
        return None
    if payload.get("typ") != _TOKEN_TYPE:
        return None
    try:
        return AttributionClaims(
            affiliate_id=int(payload["sub"]),
            offer_id=int(payload["offer_id"]),
            link_id=int(payload["link_id"]),
            link_code=str(payload["link_code"]),
            click_id=payload.get("click_id"),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError):
        logger.warning("Attribution cookie has malformed claims")
        return None


__all__ = [
    "generate_link_code",
    "generate_postback_token",
    "link_full_url",
    "get_link_for_click",
    "destination_url",
    "record_click",
    "mark_click_converted",
    "cookie_max_age_seconds",
    "issue_attribution_token",
    "decode_attribution_token",
]
