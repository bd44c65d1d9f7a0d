"""
Affiliate link registry endpoints, ledger audit, and affiliate stats.
"""
import time
from decimal import Decimal
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from attribution.api.deps import get_current_affiliate, get_db, get_owned_link
from attribution.config import LINK_SETTINGS
from attribution.models.db import AffiliateLink, Offer, User
from attribution.models.schemas.base import ResponseBase
from attribution.models.schemas.links import (
    AffiliateLinkCreate,
    AffiliateLinkRead,
    AffiliateLinkUpdate,
    AffiliateStats,
    LedgerCheck,
)
from attribution.services.ledger import check_link_ledger
from attribution.services.tracking import generate_link_code, link_full_url
from attribution.utils import get_logger, log_business_event, log_performance
from attribution.utils.metrics import conversion_rate_pct, to_money
from attribution.utils.observability import request_id_of

router = APIRouter()
stats_router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/",
    response_model=AffiliateLinkRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create affiliate link",
    description="Create a tracking link with a server-generated unique code for an active offer"
)
async def create_link(
    link_data: AffiliateLinkCreate,
    request: Request,
    current_affiliate: User = Depends(get_current_affiliate),
    db: Session = Depends(get_db)
) -> AffiliateLinkRead:
    start_time = time.time()
    request_id = request_id_of(request)

    offer = db.query(Offer).filter(
        Offer.id == link_data.offer_id,
        Offer.is_active == True
    ).first()
    if not offer:
        logger.warning(
            "Link creation failed: offer not found or inactive",
            affiliate_id=current_affiliate.id,
            offer_id=link_data.offer_id,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Offer with id {link_data.offer_id} not found or not active"
        )

    affiliate_id = current_affiliate.id
    attempts = int(LINK_SETTINGS["max_code_attempts"])
    link = None
    for attempt in range(1, attempts + 1):
        code = generate_link_code()
        candidate = AffiliateLink(
            affiliate_id=affiliate_id,
            offer_id=offer.id,
            link_code=code,
            full_url=link_full_url(code),
            custom_name=link_data.custom_name,
            campaign=link_data.campaign,
        )
        try:
            db.add(candidate)
            db.commit()
        except IntegrityError:
            # Code collision; the unique index is the arbiter.
            db.rollback()
            logger.warning("Link code collision, regenerating", attempt=attempt, request_id=request_id)
            continue
        link = candidate
        break

    if link is None:
        logger.error(
            "Link creation failed: no free link code",
            affiliate_id=affiliate_id,
            attempts=attempts,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not allocate a link code; retry"
        )

    db.refresh(link)
    log_business_event(
        event_type="affiliate_link_created",
        details={"link_id": link.id, "offer_id": link.offer_id, "link_code": link.link_code},
        user_id=affiliate_id,
        request_id=request_id
    )
    log_performance(
        operation="create_link",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"link_id": link.id}
    )
    return AffiliateLinkRead.model_validate(link)

@router.get(
    "/",
    response_model=List[AffiliateLinkRead],
    summary="List own links"
)
async def list_links(
    active_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_affiliate: User = Depends(get_current_affiliate),
    db: Session = Depends(get_db)
) -> List[AffiliateLinkRead]:
    query = db.query(AffiliateLink).filter(AffiliateLink.affiliate_id == current_affiliate.id)
    if active_only:
        query = query.filter(AffiliateLink.is_active == True)
    links = query.order_by(AffiliateLink.id).offset(skip).limit(limit).all()
    return [AffiliateLinkRead.model_validate(link) for link in links]

@router.get(
    "/{link_id}",
    response_model=AffiliateLinkRead,
    summary="Get link"
)
async def get_link(link: AffiliateLink = Depends(get_owned_link)) -> AffiliateLinkRead:
    return AffiliateLinkRead.model_validate(link)

@router.patch(
    "/{link_id}",
    response_model=AffiliateLinkRead,
    summary="Update link",
    description="Rename, re-tag or (de)activate a link. Aggregates are never editable."
)
async def update_link(
    link_update: AffiliateLinkUpdate,
    request: Request,
    link: AffiliateLink = Depends(get_owned_link),
    db: Session = Depends(get_db)
) -> AffiliateLinkRead:
    changes = link_update.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(link, field, value)
    db.commit()
    db.refresh(link)

    log_business_event(
        event_type="affiliate_link_updated",
        details={"link_id": link.id, "changed_fields": sorted(changes)},
        user_id=link.affiliate_id,
        request_id=request_id_of(request)
    )
    return AffiliateLinkRead.model_validate(link)

@router.delete(
    "/{link_id}",
    response_model=ResponseBase,
    summary="Deactivate link",
    description="Stops new clicks; late conversions on existing visitors still attribute"
)
async def deactivate_link(
    request: Request,
    link: AffiliateLink = Depends(get_owned_link),
    db: Session = Depends(get_db)
) -> ResponseBase:
    link_id = link.id
    affiliate_id = link.affiliate_id
    link.is_active = False
    db.commit()

    log_business_event(
        event_type="affiliate_link_deactivated",
        details={"link_id": link_id},
        user_id=affiliate_id,
        request_id=request_id_of(request)
    )
    return ResponseBase(message=f"Link {link_id} deactivated", data={"link_id": link_id})

@router.get(
    "/{link_id}/ledger",
    response_model=LedgerCheck,
    summary="Ledger audit",
    description="Recompute the link's commission from its registrations and deposits"
)
async def get_link_ledger(
    link: AffiliateLink = Depends(get_owned_link),
    db: Session = Depends(get_db)
) -> LedgerCheck:
    check = check_link_ledger(db, link)
    if not check.consistent:
        logger.error(
            "Ledger mismatch",
            link_id=link.id,
            stored=check.stored_total_commission,
            recomputed=check.recomputed_total_commission
        )
    return check

@stats_router.get(
    "/stats",
    response_model=AffiliateStats,
    summary="Affiliate stats",
    description="Totals across the calling affiliate's links"
)
async def get_affiliate_stats(
    current_affiliate: User = Depends(get_current_affiliate),
    db: Session = Depends(get_db)
) -> AffiliateStats:
    clicks, conversions, commission, active = db.query(
        func.coalesce(func.sum(AffiliateLink.clicks), 0),
        func.coalesce(func.sum(AffiliateLink.conversions), 0),
        func.coalesce(func.sum(AffiliateLink.total_commission), Decimal("0")),
        func.coalesce(func.sum(case((AffiliateLink.is_active == True, 1), else_=0)), 0),
    ).filter(AffiliateLink.affiliate_id == current_affiliate.id).one()

    return AffiliateStats(
        total_clicks=int(clicks),
        total_conversions=int(conversions),
        total_commission=to_money(commission),
        active_links=int(active or 0),
        conversion_rate_pct=conversion_rate_pct(int(clicks), int(conversions)),
        available_balance=to_money(current_affiliate.available_balance),
    )
