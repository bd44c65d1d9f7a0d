"""
First-party tracking: the /ref redirect that sets the attribution cookie, and
the cookie-based registration/deposit calls used by houses that cannot send
server-to-server postbacks.
"""
import time
from typing import Dict
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from attribution.api.deps import get_db
from attribution.api.endpoints.postbacks import to_http_error
from attribution.config import TRACKING_COOKIE
from attribution.models.db import Offer
from attribution.models.db.enums import EventKind, EventSource
from attribution.models.schemas.base import ResponseBase
from attribution.models.schemas.events import ClickEvent
from attribution.models.schemas.tracking import AttributionClaims, TrackingDeposit, TrackingRegistration
from attribution.services.errors import AttributionError, InvalidPostback, OfferNotFound
from attribution.services.event_processor import ClientInfo, process_event
from attribution.services.ingestion import normalize_postback
from attribution.services.tracking import (
    decode_attribution_token,
    destination_url,
    get_link_for_click,
    issue_attribution_token,
)
from attribution.utils import get_logger, log_business_event, log_performance
from attribution.utils.observability import client_ip_of, request_id_of
from attribution.utils.time import utc_now

# Mounted at the application root (/ref/...), outside the /api prefix.
redirect_router = APIRouter()
router = APIRouter()
logger = get_logger(__name__)

def _client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=client_ip_of(request),
        user_agent=request.headers.get("User-Agent"),
        referrer=request.headers.get("Referer"),
    )

@redirect_router.get(
    "/ref/{link_code}",
    status_code=status.HTTP_302_FOUND,
    response_class=RedirectResponse,
    summary="Follow affiliate link",
    description="Record a click, set the attribution cookie and redirect to the offer"
)
async def follow_affiliate_link(
    link_code: str,
    request: Request,
    db: Session = Depends(get_db)
) -> RedirectResponse:
    start_time = time.time()
    request_id = request_id_of(request)

    found = get_link_for_click(db, link_code)
    if found is None:
        logger.warning("Unknown or inactive link followed", link_code=link_code, request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"reason": "link_not_found", "message": "Affiliate link not found", "retriable": False}
        )
    link, offer = found
    website_url = offer.website_url

    event = ClickEvent(
        offer_id=offer.id,
        subid=link.link_code,
        occurred_at=utc_now(),
        source=EventSource.FIRST_PARTY,
    )
    try:
        result = process_event(db, offer, event, client=_client_info(request), request_id=request_id)
    except AttributionError as exc:
        raise to_http_error(exc)

    token, max_age = issue_attribution_token(link, offer, click_id=result.record_id)
    response = RedirectResponse(
        url=destination_url(website_url, link.link_code, result.record_id),
        status_code=status.HTTP_302_FOUND,
    )
    response.set_cookie(
        key=str(TRACKING_COOKIE["name"]),
        value=token,
        max_age=max_age,
        httponly=bool(TRACKING_COOKIE["httponly"]),
        secure=bool(TRACKING_COOKIE["secure"]),
        samesite=str(TRACKING_COOKIE["samesite"]),  # type: ignore[arg-type]
    )

    log_performance(
        operation="follow_affiliate_link",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"link_id": result.link_id, "request_id": request_id}
    )
    return response

def _claims_from_cookie(request: Request) -> AttributionClaims:
    token = request.cookies.get(str(TRACKING_COOKIE["name"]))
    if not token:
        raise InvalidPostback("missing_attribution_cookie", "No attribution cookie present")
    claims = decode_attribution_token(token)
    if claims is None:
        raise InvalidPostback("invalid_attribution_cookie", "Attribution cookie is invalid or expired")
    return claims

def _offer_for_claims(db: Session, claims: AttributionClaims) -> Offer:
    offer = db.query(Offer).filter(Offer.id == claims.offer_id).first()
    if offer is None or not offer.is_active:
        raise OfferNotFound()
    return offer

def _track(
    db: Session,
    request: Request,
    kind: EventKind,
    params: Dict[str, str],
) -> ResponseBase:
    start_time = time.time()
    request_id = request_id_of(request)
    try:
        claims = _claims_from_cookie(request)
        offer = _offer_for_claims(db, claims)
        params = {"subid": claims.link_code, **params}
        if claims.click_id is not None:
            params["click_id"] = str(claims.click_id)
        event = normalize_postback(offer, kind, params, EventSource.FIRST_PARTY)
        result = process_event(
            db,
            offer,
            event,
            client=_client_info(request),
            raw_params=params,
            request_id=request_id,
        )
    except AttributionError as exc:
        logger.warning(
            "First-party tracking call rejected",
            event=kind.value,
            reason=exc.reason,
            request_id=request_id
        )
        raise to_http_error(exc)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            "Unexpected error in first-party tracking",
            event=kind.value,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record tracking event"
        )

    log_business_event(
        event_type=f"first_party_{kind.value}",
        details={"link_id": result.link_id, "duplicate": result.duplicate},
        user_id=result.affiliate_id,
        request_id=request_id
    )
    log_performance(
        operation=f"track_{kind.value}",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"request_id": request_id}
    )
    return ResponseBase(
        message="Duplicate event ignored" if result.duplicate else "Event recorded",
        data=result.as_response_data(),
    )

@router.post(
    "/registration",
    response_model=ResponseBase,
    summary="Track registration",
    description="Record a registration attributed through the tracking cookie"
)
async def track_registration(
    payload: TrackingRegistration,
    request: Request,
    db: Session = Depends(get_db)
) -> ResponseBase:
    params = {"customer_id": payload.customer_id}
    if payload.email:
        params["email"] = payload.email
    return _track(db, request, EventKind.REGISTRATION, params)

@router.post(
    "/deposit",
    response_model=ResponseBase,
    summary="Track deposit",
    description="Record a deposit attributed through the tracking cookie"
)
async def track_deposit(
    payload: TrackingDeposit,
    request: Request,
    db: Session = Depends(get_db)
) -> ResponseBase:
    params = {
        "customer_id": payload.customer_id,
        "amount": str(payload.amount),
        "currency": payload.currency,
    }
    if payload.event_id:
        params["event_id"] = payload.event_id
    else:
        # Without a reference, receipt time keeps separate deposits apart.
        params["timestamp"] = str(int(utc_now().timestamp() * 1000))
    return _track(db, request, EventKind.DEPOSIT, params)
