import os
import secrets
import sys
from decimal import Decimal
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'attribution' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from attribution.main import app  # type: ignore
from attribution.database import Base  # type: ignore
from attribution.api import deps  # type: ignore
"""Pytest fixtures and factories.

All model modules are imported through attribution.models.db before
Base.metadata.create_all(), so every relationship target exists.
"""
from attribution.models.db import AffiliateLink, Offer, User
from attribution.models.db.enums import CommissionType, UserRole
from attribution.services.tracking import generate_link_code, generate_postback_token, link_full_url

# File-based SQLite so the app's sessions and the test's session see the same data.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_attribution.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

import attribution.database as _attribution_database  # noqa: E402
_attribution_database.SessionLocal = TestingSessionLocal  # type: ignore

@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_attribution.db")
    except OSError:
        pass

@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db

@pytest.fixture()
def client():
    return TestClient(app)

# ---------- Data factory helpers ----------

def _make_user(db_session, role: UserRole, prefix: str) -> User:
    suffix = secrets.token_hex(4)
    user = User(
        name=f"{prefix} {suffix}",
        email=f"{prefix.lower().replace(' ', '_')}_{suffix}@example.com",
        api_key=f"{'adm' if role == UserRole.ADMIN else 'aff'}_{secrets.token_hex(12)}",
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user

@pytest.fixture()
def affiliate_factory(db_session):
    def _create() -> User:
        return _make_user(db_session, UserRole.AFFILIATE, "Test Affiliate")
    return _create

@pytest.fixture()
def admin_factory(db_session):
    def _create() -> User:
        return _make_user(db_session, UserRole.ADMIN, "Admin User")
    return _create

@pytest.fixture()
def offer_factory(db_session):
    def _create(
        commission_type: CommissionType = CommissionType.CPA,
        *,
        cpa: str = "100.00",
        revshare: str = "25.00",
        cookie_duration_days: int = 90,
        is_active: bool = True,
        website_url: str = "https://bethouse.example.com/signup",
    ) -> Offer:
        offer = Offer(
            name=f"House {secrets.token_hex(3)}",
            website_url=website_url,
            commission_type=commission_type,
            base_cpa_commission=Decimal(cpa) if commission_type.pays_cpa else Decimal("0"),
            base_revshare_percent=Decimal(revshare) if commission_type.pays_revshare else Decimal("0"),
            cookie_duration_days=cookie_duration_days,
            postback_token=generate_postback_token(),
            is_active=is_active,
        )
        db_session.add(offer)
        db_session.commit()
        db_session.refresh(offer)
        return offer
    return _create

@pytest.fixture()
def link_factory(db_session, affiliate_factory):
    def _create(offer: Offer, affiliate: User | None = None, *, is_active: bool = True) -> AffiliateLink:
        affiliate = affiliate or affiliate_factory()
        code = generate_link_code()
        link = AffiliateLink(
            affiliate_id=affiliate.id,
            offer_id=offer.id,
            link_code=code,
            full_url=link_full_url(code),
            is_active=is_active,
        )
        db_session.add(link)
        db_session.commit()
        db_session.refresh(link)
        return link
    return _create

@pytest.fixture()
def auth_header(affiliate_factory):
    affiliate = affiliate_factory()
    return {"Authorization": f"Bearer {affiliate.api_key}"}, affiliate

@pytest.fixture()
def admin_header(admin_factory):
    admin = admin_factory()
    return {"Authorization": f"Bearer {admin.api_key}"}, admin

@pytest.fixture()
def refresh(db_session):
    """Reload a row after the API changed it through another session."""
    def _refresh(obj):
        db_session.expire_all()
        db_session.refresh(obj)
        return obj
    return _refresh
