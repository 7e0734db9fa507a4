"""
Application configuration from environment variables.
"""

import os
from typing import Dict, List, Tuple


def parse_rate_limit(value: str) -> Tuple[int, int]:
    """
    Parse a "maxRequests/windowSeconds" rate limit string.

    Args:
        value: Limit string such as "40/60"

    Returns:
        (max_requests, window_seconds)

    Raises:
        ValueError: If the value is malformed or not positive
    """
    try:
        requests_part, window_part = value.split('/')
        max_requests = int(requests_part)
        window_seconds = int(window_part)
    except (ValueError, AttributeError):
        raise ValueError(f"Invalid rate limit '{value}', expected 'requests/seconds'")

    if max_requests <= 0 or window_seconds <= 0:
        raise ValueError(f"Rate limit '{value}' must be positive")

    return max_requests, window_seconds


class Config:
    """Application configuration from environment variables."""

    # Platform APIs
    SHOPIFY_API_VERSION: str = os.getenv('SHOPIFY_API_VERSION', '2024-01')
    API_TIMEOUT: int = int(os.getenv('API_TIMEOUT', '10'))

    # Outbound throttling (requests/window seconds)
    RATE_LIMIT_SHOPIFY: str = os.getenv('RATE_LIMIT_SHOPIFY', '40/60')
    RATE_LIMIT_MAGENTO: str = os.getenv('RATE_LIMIT_MAGENTO', '100/60')
    RATE_LIMIT_WOOCOMMERCE: str = os.getenv('RATE_LIMIT_WOOCOMMERCE', '60/60')

    # Response cache
    CACHE_MAX_ENTRIES: int = int(os.getenv('CACHE_MAX_ENTRIES', '1000'))
    CACHE_DEFAULT_TTL: int = int(os.getenv('CACHE_DEFAULT_TTL', '300'))

    # Pricing
    BUDGET_NEEDS: float = float(os.getenv('BUDGET_NEEDS', '0.5'))
    BUDGET_WANTS: float = float(os.getenv('BUDGET_WANTS', '0.3'))
    BUDGET_SAVINGS: float = float(os.getenv('BUDGET_SAVINGS', '0.2'))
    MAX_DISCOUNT_PERCENTAGE: float = float(os.getenv('MAX_DISCOUNT_PERCENTAGE', '0.25'))
    ORDER_DISCOUNT_CEILING: float = float(os.getenv('ORDER_DISCOUNT_CEILING', '30'))

    # Request input bounds
    MIN_MONTHLY_INCOME: float = float(os.getenv('MIN_MONTHLY_INCOME', '100'))
    MAX_MONTHLY_INCOME: float = float(os.getenv('MAX_MONTHLY_INCOME', '1000000'))
    MAX_PRODUCT_PRICE: float = float(os.getenv('MAX_PRODUCT_PRICE', '1000000'))

    # Route-level throttle
    THROTTLE_PER_MINUTE: int = int(os.getenv('THROTTLE_PER_MINUTE', '30'))
    THROTTLE_PER_HOUR: int = int(os.getenv('THROTTLE_PER_HOUR', '1000'))

    # Optional single-store seed
    STORE_ID: str = os.getenv('STORE_ID', '')
    ECOMMERCE_PLATFORM: str = os.getenv('ECOMMERCE_PLATFORM', '')
    ECOMMERCE_DOMAIN: str = os.getenv('ECOMMERCE_DOMAIN', '')
    ECOMMERCE_API_KEY: str = os.getenv('ECOMMERCE_API_KEY', '')
    ECOMMERCE_API_SECRET: str = os.getenv('ECOMMERCE_API_SECRET', '')
    ECOMMERCE_ACCESS_TOKEN: str = os.getenv('ECOMMERCE_ACCESS_TOKEN', '')
    WEBHOOK_SECRET: str = os.getenv('WEBHOOK_SECRET', '')

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE: str = os.getenv('LOG_FILE', '')

    @classmethod
    def rate_limits(cls) -> Dict[str, Tuple[int, int]]:
        """
        Per-platform outbound limits.

        Returns:
            Mapping of platform name to (max_requests, window_seconds)
        """
        return {
            'shopify': parse_rate_limit(cls.RATE_LIMIT_SHOPIFY),
            'magento': parse_rate_limit(cls.RATE_LIMIT_MAGENTO),
            'woocommerce': parse_rate_limit(cls.RATE_LIMIT_WOOCOMMERCE),
        }

    @classmethod
    def budget_allocation(cls) -> Dict[str, float]:
        """Default share of a customer budget per category."""
        return {
            'needs': cls.BUDGET_NEEDS,
            'wants': cls.BUDGET_WANTS,
            'savings': cls.BUDGET_SAVINGS,
        }

    @classmethod
    def validate(cls) -> None:
        """
        Validate configuration on startup.

        Raises:
            ValueError: If any setting is invalid
        """
        problems: List[str] = []

        for name in ('RATE_LIMIT_SHOPIFY', 'RATE_LIMIT_MAGENTO', 'RATE_LIMIT_WOOCOMMERCE'):
            try:
                parse_rate_limit(getattr(cls, name))
            except ValueError as e:
                problems.append(f"{name}: {e}")

        allocation = cls.budget_allocation()
        if any(share < 0 or share > 1 for share in allocation.values()):
            problems.append("BUDGET_*: each allocation must be between 0 and 1")
        elif abs(sum(allocation.values()) - 1.0) > 0.001:
            problems.append("BUDGET_*: allocations must sum to 1")

        if not 0 < cls.MAX_DISCOUNT_PERCENTAGE <= 1:
            problems.append("MAX_DISCOUNT_PERCENTAGE must be in (0, 1]")

        if not 0 < cls.ORDER_DISCOUNT_CEILING <= 100:
            problems.append("ORDER_DISCOUNT_CEILING must be in (0, 100]")

        if not 0 <= cls.MIN_MONTHLY_INCOME < cls.MAX_MONTHLY_INCOME:
            problems.append("MIN_MONTHLY_INCOME must be non-negative and below MAX_MONTHLY_INCOME")

        if cls.MAX_PRODUCT_PRICE <= 0:
            problems.append("MAX_PRODUCT_PRICE must be positive")

        if cls.CACHE_MAX_ENTRIES <= 0:
            problems.append("CACHE_MAX_ENTRIES must be positive")

        if cls.ECOMMERCE_PLATFORM:
            if cls.ECOMMERCE_PLATFORM.lower() not in ('shopify', 'magento', 'woocommerce', 'wordpress'):
                problems.append(f"Unsupported e-commerce platform: {cls.ECOMMERCE_PLATFORM}")
            missing = [
                key for key in ('STORE_ID', 'ECOMMERCE_DOMAIN')
                if not getattr(cls, key)
            ]
            if missing:
                problems.append(
                    f"Missing required environment variables: {', '.join(missing)}"
                )

        if problems:
            raise ValueError("; ".join(problems))
