"""
Server-to-server postback endpoints called by betting houses.

Token form:  GET|POST /postback/{offer_token}/{click|registration|deposit}
Legacy form: GET|POST /postback/receive?house_id=&token=&event=

Parameters are read from the query string, merged with a form or JSON body on
POST (body wins). A delivery the system already processed answers 200 with
``duplicate: true`` so houses stop retrying.
"""
import json
import time
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from attribution.api.deps import get_db
from attribution.models.db import Offer
from attribution.models.db.enums import EventKind, EventSource
from attribution.models.schemas.base import ResponseBase
from attribution.services.errors import AttributionError, InvalidPostback
from attribution.services.event_processor import ClientInfo, process_event, record_rejected_postback
from attribution.services.ingestion import (
    normalize_postback,
    parse_event_kind,
    resolve_offer_by_token,
    resolve_offer_for_legacy,
)
from attribution.utils import get_logger, log_performance
from attribution.utils.observability import client_ip_of, request_id_of

router = APIRouter()
logger = get_logger(__name__)

# Event kinds the legacy generic endpoint dispatches on.
LEGACY_EVENTS = {EventKind.REGISTRATION, EventKind.DEPOSIT}

async def collect_params(request: Request) -> Dict[str, str]:
    """Query params merged with a form or JSON body."""
    params: Dict[str, str] = dict(request.query_params.items())
    if request.method != "POST":
        return params

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        raw = await request.body()
        if not raw:
            return params
        try:
            body = json.loads(raw)
        except ValueError:
            raise InvalidPostback("invalid_body", "Request body is not valid JSON") from None
        if not isinstance(body, dict):
            raise InvalidPostback("invalid_body", "JSON body must be an object")
        params.update({str(k): str(v) for k, v in body.items() if v is not None})
    elif content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params

def to_http_error(exc: AttributionError) -> HTTPException:
    headers = {"Retry-After": "30"} if exc.retriable else None
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail(), headers=headers)

def _ingest(
    db: Session,
    offer: Offer,
    kind: EventKind,
    params: Dict[str, str],
    source: EventSource,
    request: Request,
    request_id: str,
) -> ResponseBase:
    try:
        event = normalize_postback(offer, kind, params, source)
    except InvalidPostback as exc:
        logger.warning(
            "Postback rejected: invalid parameters",
            offer_id=offer.id,
            event=kind.value,
            reason=exc.reason,
            detail=exc.message,
            request_id=request_id
        )
        record_rejected_postback(
            db,
            offer_id=offer.id,
            kind=kind,
            source=source,
            error=exc,
            raw_params=params,
            request_id=request_id,
        )
        raise

    result = process_event(
        db,
        offer,
        event,
        client=ClientInfo(
            ip_address=client_ip_of(request),
            user_agent=request.headers.get("User-Agent"),
            referrer=request.headers.get("Referer"),
        ),
        raw_params=params,
        request_id=request_id,
    )

    logger.info(
        "Postback accepted",
        offer_id=offer.id,
        event=kind.value,
        subid=event.subid,
        duplicate=result.duplicate,
        commission=result.commission,
        request_id=request_id
    )
    return ResponseBase(
        message="Duplicate event ignored" if result.duplicate else "Event recorded",
        data=result.as_response_data(),
    )

def _handle_unexpected(e: Exception, request_id: str, **context: Any) -> HTTPException:
    logger.error(
        "Unexpected error processing postback",
        error=str(e),
        request_id=request_id,
        exc_info=True,
        **context
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to process postback"
    )

@router.api_route(
    "/receive",
    methods=["GET", "POST"],
    response_model=ResponseBase,
    summary="Legacy generic postback",
    description=(
        "Generic postback dispatching on the event param (registration or deposit). "
        "Requires house_id AND token, the offer's postback token; a house_id alone is "
        "answered with 404. GET /api/offers/{id}/postback-urls returns a ready URL."
    )
)
async def receive_legacy_postback(
    request: Request,
    db: Session = Depends(get_db)
) -> ResponseBase:
    """
    Legacy ``/receive?house_id=&token=&event=&subid=...`` postback.

    ``house_id`` is guessable, so the offer's secret ``token`` must accompany it
    and match that offer. Missing or mismatched pairs look like an unknown offer.
    """
    start_time = time.time()
    request_id = request_id_of(request)

    try:
        params = await collect_params(request)
        offer = resolve_offer_for_legacy(db, params.get("house_id"), params.get("token"))
        kind = parse_event_kind(params.get("event"))
        if kind not in LEGACY_EVENTS:
            raise InvalidPostback("unsupported_event", f"Legacy endpoint does not accept '{kind.value}' events")
        return _ingest(db, offer, kind, params, EventSource.LEGACY_POSTBACK, request, request_id)
    except AttributionError as exc:
        raise to_http_error(exc)
    except HTTPException:
        raise
    except Exception as e:
        raise _handle_unexpected(e, request_id, endpoint="legacy")
    finally:
        log_performance(
            operation="legacy_postback",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"request_id": request_id}
        )

@router.api_route(
    "/{offer_token}/{event_type}",
    methods=["GET", "POST"],
    response_model=ResponseBase,
    summary="Receive postback",
    description="Click, registration or deposit postback authenticated by the offer's secret token"
)
async def receive_postback(
    offer_token: str,
    event_type: str,
    request: Request,
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request_id_of(request)
    offer_id: Optional[int] = None

    try:
        # Token first: a bad token must look the same whatever else is wrong.
        offer = resolve_offer_by_token(db, offer_token)
        offer_id = offer.id
        kind = parse_event_kind(event_type)
        params = await collect_params(request)
        return _ingest(db, offer, kind, params, EventSource.POSTBACK, request, request_id)
    except AttributionError as exc:
        raise to_http_error(exc)
    except HTTPException:
        raise
    except Exception as e:
        raise _handle_unexpected(e, request_id, offer_id=offer_id, event=event_type)
    finally:
        log_performance(
            operation="postback",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"event": event_type, "offer_id": offer_id, "request_id": request_id}
        )
