"""
Tests for budget pricing calculations.
"""

import pytest

from budgetprice.services.pricing_engine import (
    calculate_budget_breakdown,
    calculate_product_pricing,
    calculate_purchase_impact,
    max_discount_for_plan,
    pricing_recommendation,
    round_money,
)


def test_discount_is_capped_at_max_percentage():
    """Test that the needed discount is capped at 25% of the base price."""
    pricing = calculate_product_pricing(
        'p1', base_price=1000, customer_budget=2000, category='wants',
        max_discount_percentage=0.25
    )

    assert pricing.available_budget == 600
    assert pricing.budget_discount == 250
    assert pricing.final_price == 750
    assert pricing.discount_percentage == 25
    assert pricing.within_budget is False
    assert pricing.remaining_budget == -150


def test_no_discount_when_within_budget():
    pricing = calculate_product_pricing('p1', base_price=500, customer_budget=2000, category='needs')

    assert pricing.available_budget == 1000
    assert pricing.budget_discount == 0
    assert pricing.final_price == 500
    assert pricing.discount_percentage == 0
    assert pricing.within_budget is True
    assert pricing.remaining_budget == 500


def test_uncapped_discount_reaches_budget():
    """Test that a small gap is closed exactly."""
    pricing = calculate_product_pricing('p1', base_price=700, customer_budget=2000, category='wants')

    assert pricing.budget_discount == 100
    assert pricing.final_price == 600
    assert pricing.within_budget is True
    assert pricing.remaining_budget == 0


def test_platform_discounts_count_toward_percentage():
    pricing = calculate_product_pricing(
        'p1', base_price=1000, customer_budget=2000, category='wants', platform_discounts=300
    )

    assert pricing.budget_discount == 100
    assert pricing.final_price == 600
    assert pricing.discount_percentage == 40


def test_custom_allocation():
    pricing = calculate_product_pricing(
        'p1', base_price=100, customer_budget=1000, category='savings',
        allocation={'savings': 0.05}
    )

    assert pricing.available_budget == 50
    assert pricing.final_price == 75


def test_rounding_is_half_up():
    assert round_money(2.675) == 2.68
    assert round_money(0.125) == 0.13

    pricing = calculate_product_pricing('p1', base_price=33.335, customer_budget=0, category='wants',
                                        max_discount_percentage=0.1)
    assert pricing.budget_discount == 3.33
    assert pricing.final_price == 30.0


def test_zero_base_price():
    pricing = calculate_product_pricing('p1', base_price=0, customer_budget=100)

    assert pricing.discount_percentage == 0
    assert pricing.within_budget is True


@pytest.mark.parametrize('kwargs', [
    {'base_price': -1, 'customer_budget': 100},
    {'base_price': 10, 'customer_budget': -1},
    {'base_price': 10, 'customer_budget': 100, 'platform_discounts': -5},
    {'base_price': 10, 'customer_budget': 100, 'category': 'luxuries'},
    {'base_price': 10, 'customer_budget': 100, 'max_discount_percentage': 1.5},
])
def test_invalid_input(kwargs):
    with pytest.raises(ValueError):
        calculate_product_pricing('p1', **kwargs)


def test_repeated_calls_are_identical():
    first = calculate_product_pricing('p1', base_price=19.99, customer_budget=33.33, category='needs')
    second = calculate_product_pricing('p1', base_price=19.99, customer_budget=33.33, category='needs')

    assert first == second


def test_budget_breakdown_default_rule():
    breakdown = calculate_budget_breakdown(3000)

    assert breakdown.needs_amount == 1500
    assert breakdown.wants_amount == 900
    assert breakdown.savings_amount == 600
    assert breakdown.amount_for('wants') == 900


def test_purchase_impact():
    breakdown = calculate_budget_breakdown(2000)

    impact = calculate_purchase_impact(750, breakdown, 'wants')

    assert impact.category_percentage == 125
    assert impact.total_percentage == 37.5
    assert impact.remaining_category_budget == 0
    assert impact.affordable_within_category is False


def test_recommendation_levels():
    breakdown = calculate_budget_breakdown(2000)

    fits = calculate_product_pricing('p', base_price=500, customer_budget=2000, category='wants')
    assert pricing_recommendation(fits, calculate_purchase_impact(500, breakdown))['type'] == 'success'

    slightly_over = calculate_product_pricing('p', base_price=700, customer_budget=2000,
                                              category='wants', max_discount_percentage=0)
    impact = calculate_purchase_impact(slightly_over.final_price, breakdown)
    assert pricing_recommendation(slightly_over, impact)['type'] == 'warning'

    far_over = calculate_product_pricing('p', base_price=1000, customer_budget=2000, category='wants')
    impact = calculate_purchase_impact(far_over.final_price, breakdown)
    assert pricing_recommendation(far_over, impact)['type'] == 'error'


def test_plan_limits():
    assert max_discount_for_plan('free') == 0.15
    assert max_discount_for_plan('starter', 0.5) == 0.25
    assert max_discount_for_plan('Enterprise', 0.3) == 0.3

    with pytest.raises(ValueError):
        max_discount_for_plan('platinum')
