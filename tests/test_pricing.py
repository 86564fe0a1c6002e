"""
Tests for credit pricing.
"""
import pytest

from avatar_studio.core.pricing import CREDIT_PRICING, CreditPricingTable, credit_cost, credits_for_payment
from avatar_studio.storage.models import ContentKind


def test_image_costs_one_credit():
    assert credit_cost(ContentKind.IMAGE) == 1


def test_video_costs_three_credits():
    assert credit_cost(ContentKind.VIDEO) == 3


def test_every_kind_is_priced():
    for kind in ContentKind:
        assert CREDIT_PRICING.get_cost(kind) > 0


def test_unpriced_kind():
    table = CreditPricingTable({ContentKind.IMAGE: 1})

    with pytest.raises(ValueError, match="Unsupported content kind"):
        table.get_cost(ContentKind.VIDEO)


def test_payment_conversion():
    assert credits_for_payment(1000, credits_per_usd=10) == 100


def test_payment_conversion_rounds_down():
    """Test partial credits are never granted."""
    assert credits_for_payment(999, credits_per_usd=10) == 99
    assert credits_for_payment(5, credits_per_usd=10) == 0


def test_payment_conversion_rejects_invalid_input():
    with pytest.raises(ValueError, match="amount_cents"):
        credits_for_payment(0, credits_per_usd=10)
    with pytest.raises(ValueError, match="credits_per_usd"):
        credits_for_payment(100, credits_per_usd=0)
