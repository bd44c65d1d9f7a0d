from datetime import timedelta
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

from jose import jwt

from attribution.config import SECURITY_SETTINGS
from attribution.models.db import AffiliateLink, Offer
from attribution.models.db.enums import CommissionType
from attribution.services.tracking import (
    cookie_max_age_seconds,
    decode_attribution_token,
    destination_url,
    generate_link_code,
    issue_attribution_token,
)
from attribution.utils.time import utc_now


def _offer(days: int = 90) -> Offer:
    return Offer(
        id=3,
        name="House",
        website_url="https://house.example.com",
        commission_type=CommissionType.CPA,
        base_cpa_commission=Decimal("100"),
        base_revshare_percent=Decimal("0"),
        cookie_duration_days=days,
        postback_token="tok",
    )


def _link() -> AffiliateLink:
    return AffiliateLink(id=11, affiliate_id=5, offer_id=3, link_code="AbC123xyz0", full_url="http://x/ref/AbC123xyz0")


def test_cookie_max_age_matches_offer_duration():
    assert cookie_max_age_seconds(_offer(90)) == 7_776_000
    assert cookie_max_age_seconds(_offer(1)) == 86_400


def test_token_roundtrip_carries_attribution_claims():
    token, max_age = issue_attribution_token(_link(), _offer(30), click_id=99)
    claims = decode_attribution_token(token)
    assert max_age == 30 * 86_400
    assert claims is not None
    assert (claims.affiliate_id, claims.offer_id, claims.link_id, claims.link_code, claims.click_id) == (
        5, 3, 11, "AbC123xyz0", 99
    )
    assert claims.expires_at - claims.issued_at == timedelta(days=30)


def test_tampered_token_is_rejected():
    token, _ = issue_attribution_token(_link(), _offer())
    header, payload, signature = token.split(".")
    forged = jwt.encode({"sub": "999", "offer_id": 3, "link_id": 11}, "wrong-secret", algorithm="HS256")
    assert decode_attribution_token(f"{header}.{forged.split('.')[1]}.{signature}") is None
    assert decode_attribution_token(forged) is None
    assert decode_attribution_token("not-a-token") is None


def test_expired_token_is_rejected():
    token, _ = issue_attribution_token(_link(), _offer(1), now=utc_now() - timedelta(days=2))
    assert decode_attribution_token(token) is None


def test_foreign_token_type_is_rejected():
    token = jwt.encode(
        {"sub": "5", "offer_id": 3, "link_id": 11, "link_code": "x", "iat": 0, "exp": 4_000_000_000},
        SECURITY_SETTINGS["secret_key"],
        algorithm=SECURITY_SETTINGS["algorithm"],
    )
    assert decode_attribution_token(token) is None


def test_destination_url_appends_subid_and_click_id():
    url = destination_url("https://house.example.com/join?lang=pt&subid=old", "AbC123xyz0", 42)
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    assert parts.netloc == "house.example.com" and parts.path == "/join"
    assert query == {"lang": ["pt"], "subid": ["AbC123xyz0"], "click_id": ["42"]}


def test_link_codes_are_url_safe_and_fixed_length():
    codes = {generate_link_code() for _ in range(50)}
    assert len(codes) == 50
    for code in codes:
        assert len(code) == 10
        assert all(ch.isalnum() or ch in "-_" for ch in code)
