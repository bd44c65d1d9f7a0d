"""
Request-scoped dependencies: the database session, API-key authentication,
role gates and ownership-checked lookups.

Postback and tracking routes only use ``get_db``; houses authenticate with the
offer token in the path, visitors with the attribution cookie.
"""
from typing import Callable, Generator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from attribution.database import SessionLocal
from attribution.models.db import AffiliateLink, User
from attribution.models.db.enums import UserRole
from attribution.utils import get_logger

logger = get_logger(__name__)
bearer_scheme = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    """One session per request; rolled back if the handler raises."""
    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _masked(api_key: str) -> str:
    # Only a short prefix of a rejected key reaches the logs.
    return f"{api_key[:6]}***" if len(api_key) > 6 else "***"


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the bearer API key to an active user.

    Raises:
        HTTPException: 401 when the key is unknown or the user is deactivated
    """
    api_key = credentials.credentials
    user = db.query(User).filter(User.api_key == api_key).first()

    if user is None or not user.is_active:
        logger.warning("Rejected API key", api_key=_masked(api_key))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def _role_gate(role: UserRole, denial: str) -> Callable[..., User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role != role:
            logger.warning(
                "Role check failed",
                user_id=current_user.id,
                user_role=current_user.role.value,
                required=role.value
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=denial)
        return current_user

    dependency.__name__ = f"require_{role.value.lower()}"
    return dependency


get_current_affiliate = _role_gate(UserRole.AFFILIATE, "Only affiliates can manage tracking links")
require_admin = _role_gate(UserRole.ADMIN, "Admin access required")


def get_owned_link(
    link_id: int,
    current_affiliate: User = Depends(get_current_affiliate),
    db: Session = Depends(get_db)
) -> AffiliateLink:
    """The caller's link ``link_id``; links of other affiliates are reported as missing."""
    link = db.get(AffiliateLink, link_id)
    if link is None or link.affiliate_id != current_affiliate.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Affiliate link {link_id} not found"
        )
    return link
