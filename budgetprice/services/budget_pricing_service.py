"""
Budget pricing service.

Joins the adapter registry with the pricing engine: quotes products fetched
from a store, applies budget discounts to orders and handles inbound
platform webhooks.
"""

from typing import Any, Dict, Optional

from budgetprice.adapters.base import SignatureInvalid
from budgetprice.adapters.models import BudgetPricing, OrderUpdate, Platform, WebhookEnvelope
from budgetprice.config import Config
from budgetprice.integrations.registry import IntegrationRegistry
from budgetprice.services.pricing_engine import (
    ProductPricing,
    calculate_product_pricing,
    max_discount_for_plan,
    round_money,
)
from budgetprice.utils.logger import get_logger, log_with_context

logger = get_logger(__name__)

# Webhook topics whose payload makes cached store data stale
INVALIDATING_TOPIC_MARKERS = ('product', 'customer')


class BudgetPricingService:
    """
    Service for budget-constrained pricing across stores.

    Flow:
    1. Resolve the store's adapter from the registry
    2. Fetch product data through the adapter (cached, rate limited)
    3. Compute the budget discount with the pricing engine
    4. Optionally push the discount to an order on the platform
    """

    def __init__(self, registry: IntegrationRegistry, config=Config):
        """
        Initialize service.

        Args:
            registry: Adapter registry
            config: Configuration class (allocation, default discount ceiling)
        """
        self.registry = registry
        self.config = config

    def quote(
        self,
        store_id: str,
        platform: str,
        product_id: str,
        customer_budget: float,
        category: str = 'wants',
        platform_discounts: float = 0.0,
        max_discount_percentage: Optional[float] = None,
        plan: Optional[str] = None
    ) -> Optional[ProductPricing]:
        """
        Price a store product against a customer budget.

        The product's lowest variant price is the base price.

        Args:
            store_id: Store identifier
            platform: Platform name
            product_id: Product identifier on the platform
            customer_budget: Customer's total budget
            category: needs | wants | savings
            platform_discounts: Discounts already applied on the platform
            max_discount_percentage: Lower ceiling (fraction); never above MAX_DISCOUNT_PERCENTAGE
            plan: Merchant plan; clamps the ceiling to the plan limit

        Returns:
            ProductPricing, or None if the product does not exist

        Raises:
            ConfigurationMissing: If the store has no integration for platform
            UpstreamError: If the platform request fails
            ValueError: On invalid amounts, category or plan
        """
        adapter = self.registry.resolve(store_id, platform)
        product = adapter.get_product(product_id)
        if product is None:
            log_with_context(
                logger, "WARNING",
                "Product not found for quote",
                store_id=store_id,
                platform=platform,
                product_id=product_id
            )
            return None

        return calculate_product_pricing(
            product.id,
            product.price_range.min,
            customer_budget,
            category=category,
            platform_discounts=platform_discounts,
            allocation=self.config.budget_allocation(),
            max_discount_percentage=self.discount_ceiling(max_discount_percentage, plan)
        )

    def apply_to_order(
        self,
        store_id: str,
        platform: str,
        order_id: str,
        customer_id: str,
        base_price: float,
        customer_budget: float,
        category: str = 'wants',
        platform_discounts: float = 0.0,
        max_discount_percentage: Optional[float] = None,
        plan: Optional[str] = None
    ) -> OrderUpdate:
        """
        Compute the budget discount for an order and apply it on the platform.

        Only the budget part of the discount is pushed; platform discounts
        are already reflected in the order. The adapter caps the percentage
        at ORDER_DISCOUNT_CEILING.

        Returns:
            OrderUpdate (status "success" or "failed"); a zero discount is
            reported as success without touching the platform

        Raises:
            ConfigurationMissing: If the store has no integration for platform
            ValueError: On invalid amounts, category or plan
        """
        pricing = calculate_product_pricing(
            order_id,
            base_price,
            customer_budget,
            category=category,
            platform_discounts=platform_discounts,
            allocation=self.config.budget_allocation(),
            max_discount_percentage=self.discount_ceiling(max_discount_percentage, plan)
        )
        adapter = self.registry.resolve(store_id, platform)

        if pricing.budget_discount <= 0:
            return OrderUpdate(order_id=str(order_id), status='success')

        budget_percentage = round_money(pricing.budget_discount / pricing.base_price * 100)
        result = adapter.apply_budget_pricing(order_id, BudgetPricing(
            original_price=pricing.base_price,
            budget_price=pricing.final_price,
            discount_percentage=budget_percentage,
            budget_category=category,
            customer_id=str(customer_id)
        ))

        log_with_context(
            logger, "INFO" if result.succeeded else "ERROR",
            "Budget pricing applied" if result.succeeded else "Budget pricing failed",
            store_id=store_id,
            platform=platform,
            order_id=order_id,
            discount_percentage=budget_percentage,
            error=result.error
        )
        return result

    def process_webhook(self, store_id: str, platform: str, envelope: WebhookEnvelope) -> Dict[str, Any]:
        """
        Verify an inbound webhook and drop stale store state.

        Args:
            store_id: Store the webhook was addressed to
            platform: Platform name
            envelope: Raw headers and body

        Returns:
            {"topic": str | None, "invalidated": bool}

        Raises:
            ConfigurationMissing: If the store has no integration for platform
            SignatureInvalid: If the signature is missing or wrong
        """
        platform = Platform.parse(platform)
        adapter = self.registry.resolve(store_id, platform)

        if not adapter.validate_webhook(envelope):
            log_with_context(
                logger, "WARNING",
                "Webhook signature rejected",
                store_id=store_id,
                platform=platform.value
            )
            raise SignatureInvalid(f"Invalid webhook signature for store {store_id} ({platform.value})")

        topic = adapter.webhook_topic(envelope)
        invalidated = bool(topic) and any(
            marker in topic.lower() for marker in INVALIDATING_TOPIC_MARKERS
        )
        if invalidated:
            self.registry.invalidate(store_id, platform)

        log_with_context(
            logger, "INFO",
            "Webhook processed",
            store_id=store_id,
            platform=platform.value,
            topic=topic,
            invalidated=invalidated
        )
        return {"topic": topic, "invalidated": invalidated}

    def discount_ceiling(self, requested: Optional[float] = None, plan: Optional[str] = None) -> float:
        """
        Effective discount ceiling (fraction of base price).

        A caller may only lower the configured MAX_DISCOUNT_PERCENTAGE,
        never raise it; a plan clamps it further.

        Raises:
            ValueError: If requested is not a number or is negative, or the plan is unknown
        """
        ceiling = self.config.MAX_DISCOUNT_PERCENTAGE
        if requested is not None:
            try:
                requested = float(requested)
            except (TypeError, ValueError):
                raise ValueError("max_discount_percentage must be a number")
            if requested < 0:
                raise ValueError("max_discount_percentage must not be negative")
            ceiling = min(requested, ceiling)
        if plan:
            return max_discount_for_plan(plan, ceiling)
        return ceiling
