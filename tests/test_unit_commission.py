from decimal import Decimal

import pytest

from attribution.models.db import Offer
from attribution.models.db.enums import CommissionType
from attribution.services.commission import deposit_commission, registration_commission
from attribution.services.errors import InvalidPostback
from attribution.utils.metrics import conversion_rate_pct, to_money


def _offer(commission_type: CommissionType, cpa: str = "0", revshare: str = "0") -> Offer:
    return Offer(
        name="House",
        website_url="https://house.example.com",
        commission_type=commission_type,
        base_cpa_commission=Decimal(cpa),
        base_revshare_percent=Decimal(revshare),
        postback_token="unused",
    )


def test_cpa_pays_flat_amount_on_registration_only():
    offer = _offer(CommissionType.CPA, cpa="100")
    assert registration_commission(offer) == Decimal("100.00")
    assert deposit_commission(offer, Decimal("500")) == Decimal("0.00")


def test_revshare_pays_percentage_of_deposit_only():
    offer = _offer(CommissionType.REVSHARE, revshare="25")
    assert registration_commission(offer) == Decimal("0.00")
    assert deposit_commission(offer, Decimal("200")) == Decimal("50.00")


def test_hybrid_pays_both():
    offer = _offer(CommissionType.HYBRID, cpa="40", revshare="10")
    assert registration_commission(offer) == Decimal("40.00")
    assert deposit_commission(offer, Decimal("75.50")) == Decimal("7.55")


def test_revshare_rounds_half_up_to_cents():
    offer = _offer(CommissionType.REVSHARE, revshare="2.5")
    # 0.25 * 0.025 = 0.00625 -> 0.01
    assert deposit_commission(offer, Decimal("0.25")) == Decimal("0.01")
    # 10.10 * 0.025 = 0.2525 -> 0.25
    assert deposit_commission(offer, Decimal("10.10")) == Decimal("0.25")


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
def test_non_positive_deposit_is_rejected(amount):
    offer = _offer(CommissionType.REVSHARE, revshare="25")
    with pytest.raises(InvalidPostback) as exc_info:
        deposit_commission(offer, amount)
    assert exc_info.value.reason == "invalid_amount"


def test_money_helpers():
    assert to_money(None) == Decimal("0.00")
    assert to_money("1.005") == Decimal("1.01")
    assert to_money(3) == Decimal("3.00")
    assert conversion_rate_pct(0, 0) == 0.0
    assert conversion_rate_pct(3, 1) == 33.3


def test_commission_type_flags():
    assert CommissionType.CPA.pays_cpa and not CommissionType.CPA.pays_revshare
    assert CommissionType.REVSHARE.pays_revshare and not CommissionType.REVSHARE.pays_cpa
    assert CommissionType.HYBRID.pays_cpa and CommissionType.HYBRID.pays_revshare
