from datetime import datetime, timezone
from decimal import Decimal

import pytest

from attribution.models.db import Offer
from attribution.models.db.enums import CommissionType, EventKind, EventSource
from attribution.models.schemas.events import (
    DepositEvent,
    build_idempotency_key,
)
from attribution.services.errors import InvalidPostback
from attribution.services.ingestion import normalize_postback, parse_event_kind
from attribution.utils.time import parse_event_timestamp


def _offer(offer_id: int = 7) -> Offer:
    return Offer(
        id=offer_id,
        name="House",
        website_url="https://house.example.com",
        commission_type=CommissionType.HYBRID,
        base_cpa_commission=Decimal("100"),
        base_revshare_percent=Decimal("25"),
        postback_token="tok",
    )


# ---------- timestamps ----------

def test_parse_timestamp_epoch_seconds_and_millis():
    seconds = parse_event_timestamp("1700000000")
    millis = parse_event_timestamp("1700000000000")
    assert seconds == millis == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_parse_timestamp_iso_with_z_and_naive():
    assert parse_event_timestamp("2024-05-01T12:00:00Z") == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert parse_event_timestamp("2024-05-01T12:00:00").tzinfo == timezone.utc


def test_parse_timestamp_empty_and_invalid():
    assert parse_event_timestamp(None) is None
    assert parse_event_timestamp("  ") is None
    with pytest.raises(ValueError):
        parse_event_timestamp("yesterday")
    with pytest.raises(ValueError):
        parse_event_timestamp("-5")


# ---------- idempotency keys ----------

def test_registration_key_depends_only_on_offer_and_customer():
    first = normalize_postback(_offer(), EventKind.REGISTRATION, {"subid": "abc", "customer_id": "u1"})
    retry = normalize_postback(
        _offer(), EventKind.REGISTRATION, {"subid": "abc", "customer_id": "u1", "timestamp": "1700000000"}
    )
    other_offer = normalize_postback(_offer(8), EventKind.REGISTRATION, {"subid": "abc", "customer_id": "u1"})
    assert first.idempotency_key == retry.idempotency_key
    assert first.idempotency_key != other_offer.idempotency_key
    assert first.idempotency_key == build_idempotency_key(7, EventKind.REGISTRATION, "u1")
    assert len(first.idempotency_key) == 64


def test_deposit_key_prefers_upstream_event_id():
    base = {"subid": "abc", "customer_id": "u1", "amount": "50", "currency": "usd"}
    a = normalize_postback(_offer(), EventKind.DEPOSIT, {**base, "event_id": "tx-1", "timestamp": "1700000000"})
    b = normalize_postback(_offer(), EventKind.DEPOSIT, {**base, "event_id": "tx-1", "timestamp": "1700000999"})
    c = normalize_postback(_offer(), EventKind.DEPOSIT, {**base, "transaction_id": "tx-2"})
    assert a.idempotency_key == b.idempotency_key
    assert a.idempotency_key != c.idempotency_key
    assert c.external_reference == "event:tx-2"


def test_deposit_fallback_key_uses_customer_amount_and_timestamp():
    base = {"subid": "abc", "customer_id": "u1", "currency": "EUR", "timestamp": "1700000000"}
    a = normalize_postback(_offer(), EventKind.DEPOSIT, {**base, "amount": "50"})
    b = normalize_postback(_offer(), EventKind.DEPOSIT, {**base, "amount": "50.00"})
    c = normalize_postback(_offer(), EventKind.DEPOSIT, {**base, "amount": "51"})
    assert a.idempotency_key == b.idempotency_key
    assert a.idempotency_key != c.idempotency_key
    assert a.external_reference == "u1:50.00:1700000000000"


def test_deposit_fallback_key_uses_the_parsed_instant():
    base = {"subid": "abc", "customer_id": "u1", "amount": "50", "currency": "EUR"}
    keys = {
        normalize_postback(_offer(), EventKind.DEPOSIT, {**base, "timestamp": ts}).idempotency_key
        for ts in ("1700000000", "1700000000000", "2023-11-14T22:13:20Z")
    }
    assert len(keys) == 1


def test_deposit_without_event_id_or_timestamp_is_rejected():
    params = {"subid": "abc", "customer_id": "u1", "amount": "50", "currency": "EUR"}
    with pytest.raises(InvalidPostback) as exc_info:
        normalize_postback(_offer(), EventKind.DEPOSIT, params)
    assert exc_info.value.reason == "missing_required_field"
    assert "timestamp" in exc_info.value.message

    assert normalize_postback(_offer(), EventKind.DEPOSIT, {**params, "event_id": "tx-9"}).external_reference == "event:tx-9"


def test_click_key_only_with_house_reference():
    without = normalize_postback(_offer(), EventKind.CLICK, {"subid": "abc"})
    with_ref = normalize_postback(_offer(), EventKind.CLICK, {"subid": "abc", "click_id": "house-9"})
    assert without.idempotency_key is None
    assert with_ref.idempotency_key == build_idempotency_key(7, EventKind.CLICK, "house-9")


# ---------- normalization ----------

def test_normalize_builds_typed_events():
    event = normalize_postback(
        _offer(),
        EventKind.DEPOSIT,
        {"subid": " abc ", "customer_id": "u1", "amount": "19.99", "currency": "brl", "click_id": "12", "event_id": "d-1"},
        EventSource.LEGACY_POSTBACK,
    )
    assert isinstance(event, DepositEvent)
    assert event.subid == "abc"
    assert event.amount == Decimal("19.99")
    assert event.currency == "BRL"
    assert event.click_id == 12
    assert event.source is EventSource.LEGACY_POSTBACK
    assert event.occurred_at.tzinfo is not None


@pytest.mark.parametrize(
    "kind,params,reason",
    [
        (EventKind.REGISTRATION, {"subid": "abc"}, "missing_required_field"),
        (EventKind.REGISTRATION, {"customer_id": "u1"}, "missing_required_field"),
        (EventKind.DEPOSIT, {"subid": "abc", "customer_id": "u1", "currency": "USD"}, "missing_required_field"),
        (EventKind.DEPOSIT, {"subid": "abc", "customer_id": "u1", "amount": "ten", "currency": "USD"}, "invalid_amount"),
        (EventKind.DEPOSIT, {"subid": "abc", "customer_id": "u1", "amount": "-1", "currency": "USD"}, "invalid_amount"),
        (EventKind.DEPOSIT, {"subid": "abc", "customer_id": "u1", "amount": "1.001", "currency": "USD"}, "invalid_amount"),
        (EventKind.DEPOSIT, {"subid": "abc", "customer_id": "u1", "amount": "1", "currency": "DOLLARS"}, "invalid_currency"),
        (EventKind.REGISTRATION, {"subid": "abc", "customer_id": "u1", "timestamp": "soon"}, "invalid_timestamp"),
    ],
)
def test_normalize_rejects_malformed_params(kind, params, reason):
    with pytest.raises(InvalidPostback) as exc_info:
        normalize_postback(_offer(), kind, params)
    assert exc_info.value.reason == reason
    assert exc_info.value.status_code == 400
    assert exc_info.value.retriable is False


@pytest.mark.parametrize("raw", ["abc-123", "0", "-4", "12.5"])
def test_foreign_click_id_is_ignored(raw):
    event = normalize_postback(_offer(), EventKind.REGISTRATION, {"subid": "abc", "customer_id": "u1", "click_id": raw})
    assert event.click_id is None
    assert event.external_customer_id == "u1"


def test_long_subid_is_passed_through_for_lookup():
    event = normalize_postback(_offer(), EventKind.REGISTRATION, {"subid": "x" * 150, "customer_id": "u1"})
    assert len(event.subid) == 150


def test_parse_event_kind():
    assert parse_event_kind("Registration") is EventKind.REGISTRATION
    with pytest.raises(InvalidPostback) as exc_info:
        parse_event_kind("withdrawal")
    assert exc_info.value.reason == "unsupported_event"

