from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from attribution.main import app
from attribution.models.db import Click, Deposit, PostbackEvent, Registration
from attribution.models.db.enums import CommissionType, EventSource
from attribution.services.tracking import decode_attribution_token


def _follow(client: TestClient, link):
    return client.get(f"/ref/{link.link_code}", follow_redirects=False)


def test_ref_redirects_with_cookie_and_records_click(client: TestClient, db_session: Session, offer_factory, link_factory, refresh):
    offer = offer_factory(website_url="https://bethouse.example.com/signup?lang=en")
    link = link_factory(offer)

    r = _follow(client, link)
    assert r.status_code == 302

    location = urlsplit(r.headers["location"])
    query = parse_qs(location.query)
    assert location.netloc == "bethouse.example.com"
    assert query["lang"] == ["en"]
    assert query["subid"] == [link.link_code]
    click_id = int(query["click_id"][0])

    set_cookie = r.headers["set-cookie"]
    assert set_cookie.startswith("affiliate_tracking=")
    assert "Max-Age=7776000" in set_cookie
    assert "HttpOnly" in set_cookie

    claims = decode_attribution_token(r.cookies["affiliate_tracking"])
    assert claims is not None
    assert (claims.link_id, claims.offer_id, claims.affiliate_id, claims.click_id) == (
        link.id, offer.id, link.affiliate_id, click_id
    )

    click = db_session.get(Click, click_id)
    assert click.link_id == link.id
    assert click.converted is False
    refresh(link)
    assert link.clicks == 1

    audit = db_session.query(PostbackEvent).filter_by(link_id=link.id).one()
    assert audit.source == EventSource.FIRST_PARTY


def test_cookie_lifetime_follows_offer_duration(client: TestClient, offer_factory, link_factory):
    offer = offer_factory(cookie_duration_days=30)
    link = link_factory(offer)
    r = _follow(client, link)
    assert "Max-Age=2592000" in r.headers["set-cookie"]


def test_unknown_or_inactive_link_is_404(client: TestClient, offer_factory, link_factory):
    assert client.get("/ref/doesnotexist", follow_redirects=False).status_code == 404

    inactive_link = link_factory(offer_factory(), is_active=False)
    assert _follow(client, inactive_link).status_code == 404

    link_of_inactive_offer = link_factory(offer_factory(is_active=False))
    r = _follow(client, link_of_inactive_offer)
    assert r.status_code == 404
    assert "set-cookie" not in r.headers


def test_first_party_registration_and_deposit_use_cookie(db_session: Session, offer_factory, link_factory, refresh):
    client = TestClient(app)
    offer = offer_factory(CommissionType.HYBRID, cpa="100.00", revshare="25.00")
    link = link_factory(offer)

    r = _follow(client, link)
    click_id = int(parse_qs(urlsplit(r.headers["location"]).query)["click_id"][0])

    r = client.post("/api/tracking/registration", json={"customer_id": "fp-user", "email": "fp@example.com"})
    assert r.status_code == 200, r.text
    assert Decimal(r.json()["data"]["commission"]) == Decimal("100.00")

    r = client.post("/api/tracking/registration", json={"customer_id": "fp-user"})
    assert r.json()["data"]["duplicate"] is True

    r = client.post("/api/tracking/deposit", json={"customer_id": "fp-user", "amount": "80.00", "currency": "usd", "event_id": "fp-dep-1"})
    assert r.status_code == 200, r.text
    assert Decimal(r.json()["data"]["commission"]) == Decimal("20.00")

    registration = db_session.query(Registration).filter_by(offer_id=offer.id, external_customer_id="fp-user").one()
    assert registration.link_id == link.id
    assert registration.email == "fp@example.com"
    assert registration.deposited is True
    deposit = db_session.query(Deposit).filter_by(registration_id=registration.id).one()
    assert deposit.currency == "USD"

    click = db_session.get(Click, click_id)
    refresh(click)
    assert click.converted is True

    refresh(link)
    assert Decimal(str(link.total_commission)) == Decimal("120.00")
    assert link.conversions == 1
    assert link.clicks == 1


def test_tracking_without_valid_cookie_is_rejected():
    client = TestClient(app)
    r = client.post("/api/tracking/registration", json={"customer_id": "nobody"})
    assert r.status_code == 400
    assert r.json()["reason"] == "missing_attribution_cookie"

    client.cookies.set("affiliate_tracking", "forged.token.value")
    r = client.post("/api/tracking/deposit", json={"customer_id": "nobody", "amount": "10", "currency": "USD"})
    assert r.status_code == 400
    assert r.json()["reason"] == "invalid_attribution_cookie"


def test_tracking_body_is_validated(offer_factory, link_factory):
    client = TestClient(app)
    _follow(client, link_factory(offer_factory(CommissionType.REVSHARE)))
    r = client.post("/api/tracking/deposit", json={"customer_id": "v", "amount": "-3", "currency": "USD"})
    assert r.status_code == 422
    assert r.json()["success"] is False
    assert r.json()["reason"] == "validation_error"
