"""
Budget-capped discount calculation.

Pure functions, no I/O. Money is computed in Decimal and rounded half-up to
cents so repeated calls on the same input always produce the same figures.
"""

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

from budgetprice.adapters.models import BUDGET_CATEGORIES

DEFAULT_ALLOCATION: Dict[str, float] = {'needs': 0.5, 'wants': 0.3, 'savings': 0.2}
DEFAULT_MAX_DISCOUNT = 0.25

# Highest budget discount (percent of base price) each subscription plan allows
PLAN_DISCOUNT_LIMITS: Dict[str, int] = {
    'free': 15,
    'starter': 25,
    'pro': 35,
    'enterprise': 50,
}

CENT = Decimal('0.01')


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def round_money(value: float) -> float:
    """Round half-up to 2 decimal places."""
    return float(_money(value))


@dataclass
class BudgetBreakdown:
    monthly_income: float
    needs_amount: float
    wants_amount: float
    savings_amount: float

    def amount_for(self, category: str) -> float:
        _check_category(category)
        return getattr(self, f"{category}_amount")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProductPricing:
    """Result of a budget pricing calculation. Money fields are rounded to cents."""

    product_id: str
    base_price: float
    platform_discounts: float
    budget_discount: float
    final_price: float
    discount_percentage: float
    available_budget: float
    within_budget: bool
    remaining_budget: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PurchaseImpact:
    category_percentage: float
    total_percentage: float
    remaining_category_budget: float
    affordable_within_category: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _check_category(category: str) -> None:
    if category not in BUDGET_CATEGORIES:
        raise ValueError(f"Invalid budget category: {category}")


def _check_amount(value: float, name: str) -> None:
    if value is None or value < 0:
        raise ValueError(f"{name} must not be negative")


def calculate_budget_breakdown(
    monthly_income: float,
    allocation: Optional[Mapping[str, float]] = None
) -> BudgetBreakdown:
    """
    Split a monthly income across budget categories (50/30/20 by default).

    Args:
        monthly_income: Customer's stated monthly budget
        allocation: Share per category; missing categories use the default

    Returns:
        BudgetBreakdown with amounts rounded to cents

    Raises:
        ValueError: If income is negative
    """
    _check_amount(monthly_income, "monthly_income")
    shares = dict(DEFAULT_ALLOCATION)
    shares.update(allocation or {})

    income = Decimal(str(monthly_income))
    return BudgetBreakdown(
        monthly_income=round_money(monthly_income),
        needs_amount=float(_money(income * Decimal(str(shares['needs'])))),
        wants_amount=float(_money(income * Decimal(str(shares['wants'])))),
        savings_amount=float(_money(income * Decimal(str(shares['savings'])))),
    )


def calculate_product_pricing(
    product_id: str,
    base_price: float,
    customer_budget: float,
    category: str = 'wants',
    platform_discounts: float = 0.0,
    allocation: Optional[Mapping[str, float]] = None,
    max_discount_percentage: float = DEFAULT_MAX_DISCOUNT
) -> ProductPricing:
    """
    Compute the budget discount that brings a product into the customer's
    category budget, capped at max_discount_percentage of the base price.

    Args:
        product_id: Product identifier
        base_price: List price before any discount
        customer_budget: Total customer budget
        category: needs | wants | savings
        platform_discounts: Discounts the platform already applied
        allocation: Category shares (default 50/30/20)
        max_discount_percentage: Merchant ceiling as a fraction of base price

    Returns:
        ProductPricing

    Raises:
        ValueError: On negative amounts, unknown category or an invalid ceiling

    Example:
        base 1000, budget 2000, wants (30%), ceiling 25%:
        available 600, needed 400, capped 250 -> final 750, not within budget
    """
    _check_category(category)
    _check_amount(base_price, "base_price")
    _check_amount(customer_budget, "customer_budget")
    _check_amount(platform_discounts, "platform_discounts")
    if not 0 <= max_discount_percentage <= 1:
        raise ValueError("max_discount_percentage must be between 0 and 1")

    shares = dict(DEFAULT_ALLOCATION)
    shares.update(allocation or {})

    base = Decimal(str(base_price))
    platform = Decimal(str(platform_discounts))
    available = _money(Decimal(str(customer_budget)) * Decimal(str(shares[category])))

    after_platform = base - platform
    budget_discount = Decimal('0')
    final = after_platform

    if after_platform > available:
        max_allowed = base * Decimal(str(max_discount_percentage))
        budget_discount = min(after_platform - available, max_allowed)
        final = after_platform - budget_discount

    budget_discount = _money(budget_discount)
    final = _money(final)

    if base > 0:
        percentage = _money((platform + budget_discount) / base * 100)
    else:
        percentage = Decimal('0.00')

    return ProductPricing(
        product_id=str(product_id),
        base_price=float(_money(base)),
        platform_discounts=float(_money(platform)),
        budget_discount=float(budget_discount),
        final_price=float(final),
        discount_percentage=float(percentage),
        available_budget=float(available),
        within_budget=final <= available,
        remaining_budget=float(available - final)
    )


def calculate_purchase_impact(
    price: float,
    breakdown: BudgetBreakdown,
    category: str = 'wants'
) -> PurchaseImpact:
    """
    How much of the category (and total) budget a purchase consumes.

    Returns:
        PurchaseImpact; a positive price against a zero budget reports
        float('inf') percentages
    """
    _check_amount(price, "price")
    category_budget = Decimal(str(breakdown.amount_for(category)))
    income = Decimal(str(breakdown.monthly_income))
    amount = Decimal(str(price))

    def share(total: Decimal) -> float:
        if total > 0:
            return float(_money(amount / total * 100))
        return 0.0 if amount == 0 else float('inf')

    return PurchaseImpact(
        category_percentage=share(category_budget),
        total_percentage=share(income),
        remaining_category_budget=float(_money(max(Decimal('0'), category_budget - amount))),
        affordable_within_category=amount <= category_budget
    )


def pricing_recommendation(pricing: ProductPricing, impact: PurchaseImpact) -> Dict[str, str]:
    """
    Customer-facing verdict for a priced product.

    Returns:
        {"type": "success" | "warning" | "error", "message": str}
    """
    if pricing.within_budget and impact.category_percentage <= 100:
        return {
            "type": "success",
            "message": "Great choice! This fits within your budget.",
        }
    if impact.category_percentage <= 120:
        return {
            "type": "warning",
            "message": "This is slightly over your budget. Consider our payment plans.",
        }
    return {
        "type": "error",
        "message": "This purchase would significantly exceed your budget.",
    }


def max_discount_for_plan(plan: str, requested: Optional[float] = None) -> float:
    """
    Clamp a merchant's discount ceiling to what their plan allows.

    Args:
        plan: free | starter | pro | enterprise
        requested: Desired ceiling as a fraction (None means the plan maximum)

    Returns:
        Effective ceiling as a fraction of base price

    Raises:
        ValueError: If the plan is unknown or requested is negative
    """
    try:
        limit = PLAN_DISCOUNT_LIMITS[str(plan).lower()] / 100
    except KeyError:
        raise ValueError(f"Unknown plan: {plan}")

    if requested is None:
        return limit
    if requested < 0:
        raise ValueError("requested discount must not be negative")
    return min(requested, limit)
