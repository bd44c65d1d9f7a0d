"""
User bootstrap endpoints (affiliates and admins).
"""
import secrets
import string
import time
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from attribution.api.deps import get_current_user, get_db
from attribution.models.db import User
from attribution.models.db.enums import UserRole
from attribution.models.schemas.users import UserCreate, UserRead
from attribution.utils import get_logger, log_business_event, log_performance
from attribution.utils.observability import request_id_of

router = APIRouter()
logger = get_logger(__name__)

def generate_api_key(role: UserRole) -> str:
    """Generate a secure API key with a role prefix."""
    alphabet = string.ascii_letters + string.digits
    prefix = "adm_" if role == UserRole.ADMIN else "aff_"
    return prefix + ''.join(secrets.choice(alphabet) for _ in range(32))

@router.post(
    "/",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create new user",
    description="Register an affiliate or admin and issue its API key"
)
async def create_user(
    user_data: UserCreate,
    request: Request,
    db: Session = Depends(get_db)
) -> UserRead:
    start_time = time.time()
    request_id = request_id_of(request)

    logger.info(
        "User creation started",
        user_name=user_data.name,
        user_role=user_data.role.value,
        request_id=request_id
    )

    existing = db.query(User).filter(
        (User.email == user_data.email) | (User.name == user_data.name)
    ).first()
    if existing:
        logger.warning(
            "User creation failed: duplicate name or email",
            existing_user_id=existing.id,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this name or email already exists"
        )

    user = User(
        name=user_data.name,
        email=user_data.email,
        role=user_data.role,
        api_key=generate_api_key(user_data.role),
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError:
        # Lost a race with a concurrent signup.
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this name or email already exists"
        )

    log_business_event(
        event_type="user_created",
        details={"user_name": user.name, "user_role": user.role.value},
        user_id=user.id,
        request_id=request_id
    )
    log_performance(
        operation="create_user",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"user_id": user.id}
    )
    return UserRead.model_validate(user)

@router.get(
    "/me",
    response_model=UserRead,
    summary="Current user"
)
async def get_me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)
