"""
Offer (betting house) administration endpoints. Admin only.
"""
import time
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from attribution.api.deps import get_db, require_admin
from attribution.config import PUBLIC_BASE_URL
from attribution.models.db import Offer, User
from attribution.models.schemas.base import ResponseBase
from attribution.models.schemas.offers import OfferAdminRead, OfferCreate, OfferUpdate, PostbackUrls
from attribution.services.tracking import generate_postback_token
from attribution.utils import get_logger, log_business_event, log_performance
from attribution.utils.observability import request_id_of

router = APIRouter()
logger = get_logger(__name__)

_PLACEHOLDERS = {
    "registration": "subid={subid}&customer_id={customer_id}&timestamp={timestamp}",
    "deposit": "subid={subid}&customer_id={customer_id}&amount={amount}&currency={currency}&timestamp={timestamp}&event_id={event_id}",
    "click": "subid={subid}&click_id={click_id}",
}

def _get_offer(db: Session, offer_id: int) -> Offer:
    offer = db.query(Offer).filter(Offer.id == offer_id).first()
    if not offer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Offer with id {offer_id} not found"
        )
    return offer

def postback_urls_for(offer: Offer) -> PostbackUrls:
    base = f"{PUBLIC_BASE_URL}/api/postback/{offer.postback_token}"
    return PostbackUrls(
        offer_id=offer.id,
        registration=f"{base}/registration?{_PLACEHOLDERS['registration']}",
        deposit=f"{base}/deposit?{_PLACEHOLDERS['deposit']}",
        click=f"{base}/click?{_PLACEHOLDERS['click']}",
        legacy=(
            f"{PUBLIC_BASE_URL}/api/postback/receive?house_id={offer.id}&token={offer.postback_token}"
            "&event={event}&subid={subid}&customer_id={customer_id}&amount={amount}&currency={currency}"
            "&timestamp={timestamp}&event_id={event_id}"
        ),
    )

@router.post(
    "/",
    response_model=OfferAdminRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create offer",
    description="Register a betting house offer with its commission terms"
)
async def create_offer(
    offer_data: OfferCreate,
    request: Request,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OfferAdminRead:
    start_time = time.time()
    request_id = request_id_of(request)

    try:
        offer = Offer(**offer_data.model_dump(), postback_token=generate_postback_token())
        db.add(offer)
        db.commit()
        db.refresh(offer)
    except IntegrityError as e:
        db.rollback()
        logger.warning("Offer creation failed: integrity error", error=str(e), request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Offer could not be created; retry"
        )

    log_business_event(
        event_type="offer_created",
        details={
            "offer_id": offer.id,
            "offer_name": offer.name,
            "commission_type": offer.commission_type.value,
            "base_cpa_commission": offer.base_cpa_commission,
            "base_revshare_percent": offer.base_revshare_percent,
        },
        user_id=current_admin.id,
        request_id=request_id
    )
    log_performance(
        operation="create_offer",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"offer_id": offer.id}
    )
    return OfferAdminRead.model_validate(offer)

@router.get(
    "/",
    response_model=List[OfferAdminRead],
    summary="List offers"
)
async def list_offers(
    active_only: bool = Query(False, description="Only return active offers"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> List[OfferAdminRead]:
    query = db.query(Offer)
    if active_only:
        query = query.filter(Offer.is_active == True)
    offers = query.order_by(Offer.id).offset(skip).limit(limit).all()
    return [OfferAdminRead.model_validate(o) for o in offers]

@router.get(
    "/{offer_id}",
    response_model=OfferAdminRead,
    summary="Get offer"
)
async def get_offer(
    offer_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OfferAdminRead:
    return OfferAdminRead.model_validate(_get_offer(db, offer_id))

@router.patch(
    "/{offer_id}",
    response_model=OfferAdminRead,
    summary="Update offer",
    description="Change terms or activity. New terms apply to events recorded after the change."
)
async def update_offer(
    offer_id: int,
    offer_update: OfferUpdate,
    request: Request,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OfferAdminRead:
    request_id = request_id_of(request)
    offer = _get_offer(db, offer_id)
    changes = offer_update.model_dump(exclude_unset=True)

    commission_type = changes.get("commission_type", offer.commission_type)
    cpa = changes.get("base_cpa_commission", offer.base_cpa_commission)
    revshare = changes.get("base_revshare_percent", offer.base_revshare_percent)
    if commission_type.pays_cpa and not cpa > 0:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="base_cpa_commission must be positive for CPA and Hybrid offers"
        )
    if commission_type.pays_revshare and not revshare > 0:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="base_revshare_percent must be positive for RevShare and Hybrid offers"
        )

    for field, value in changes.items():
        setattr(offer, field, value)
    db.commit()
    db.refresh(offer)

    log_business_event(
        event_type="offer_updated",
        details={"offer_id": offer.id, "changed_fields": sorted(changes)},
        user_id=current_admin.id,
        request_id=request_id
    )
    return OfferAdminRead.model_validate(offer)

@router.delete(
    "/{offer_id}",
    response_model=ResponseBase,
    summary="Deactivate offer",
    description="Stops accepting postbacks and link traffic; history is kept"
)
async def deactivate_offer(
    offer_id: int,
    request: Request,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request_id_of(request)
    offer = _get_offer(db, offer_id)
    offer.is_active = False
    db.commit()

    log_business_event(
        event_type="offer_deactivated",
        details={"offer_id": offer_id},
        user_id=current_admin.id,
        request_id=request_id
    )
    return ResponseBase(message=f"Offer {offer_id} deactivated", data={"offer_id": offer_id})

@router.post(
    "/{offer_id}/rotate-token",
    response_model=OfferAdminRead,
    summary="Rotate postback token",
    description="Issue a new postback token; URLs using the old token stop resolving immediately"
)
async def rotate_postback_token(
    offer_id: int,
    request: Request,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OfferAdminRead:
    request_id = request_id_of(request)
    offer = _get_offer(db, offer_id)
    offer.postback_token = generate_postback_token()
    db.commit()
    db.refresh(offer)

    logger.info("Postback token rotated", offer_id=offer_id, request_id=request_id)
    log_business_event(
        event_type="postback_token_rotated",
        details={"offer_id": offer_id},
        user_id=current_admin.id,
        request_id=request_id
    )
    return OfferAdminRead.model_validate(offer)

@router.get(
    "/{offer_id}/postback-urls",
    response_model=PostbackUrls,
    summary="Postback URL templates",
    description="Ready-to-paste postback URLs for the house's back office"
)
async def get_postback_urls(
    offer_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> PostbackUrls:
    return postback_urls_for(_get_offer(db, offer_id))
