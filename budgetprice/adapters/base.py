"""
Capability interface for commerce platform adapters.

Uses Adapter Pattern so the registry, the pricing service and the webhook
ingress work against Shopify, Magento and WooCommerce without knowing which
platform they are talking to.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from budgetprice.adapters.models import (
    AuthResult,
    BudgetPricing,
    CacheOptions,
    Credentials,
    Customer,
    DiscountRequest,
    DiscountResponse,
    OrderUpdate,
    PaginatedProducts,
    Platform,
    Product,
    ProductQueryOptions,
    ProductVariant,
    Purchase,
    WebhookConfig,
    WebhookEnvelope,
)


class IntegrationError(Exception):
    """Base exception for platform integration errors."""
    pass


class UpstreamError(IntegrationError):
    """
    Platform answered with a non-2xx status other than 404, or could not be
    reached at all (status_code is None).
    """

    def __init__(
        self,
        platform: str,
        endpoint: str,
        status_code: Optional[int] = None,
        body: str = ''
    ):
        self.platform = platform
        self.endpoint = endpoint
        self.status_code = status_code
        self.body = body
        status = status_code if status_code is not None else 'no response'
        super().__init__(f"{platform} API error on {endpoint} ({status}): {body[:200]}")


class AuthError(IntegrationError):
    """Credential exchange or verification failed."""
    pass


class SignatureInvalid(IntegrationError):
    """Webhook signature missing or wrong."""
    pass


class ConfigurationMissing(IntegrationError):
    """Store has no credentials for the requested platform."""

    def __init__(self, store_id: str, platform: str):
        self.store_id = store_id
        self.platform = platform
        super().__init__(f"Store {store_id} has no {platform} configuration")


class UnsupportedPlatformError(IntegrationError, ValueError):
    """Platform name is not one of the supported platforms."""
    pass


class PlatformAdapter(ABC):
    """Abstract base class for commerce platform adapters."""

    platform: Platform
    store_id: str
    credentials: Credentials

    @abstractmethod
    def authenticate(self, credentials: Credentials) -> AuthResult:
        """
        Exchange or verify credentials with the platform.

        Raises:
            AuthError: If the platform rejects the credentials
        """

    @abstractmethod
    def refresh_token(self, refresh_token: str) -> AuthResult:
        """Obtain a fresh access token (no-op where tokens never expire)."""

    @abstractmethod
    def validate_webhook(self, envelope: WebhookEnvelope) -> bool:
        """
        Verify the webhook signature against the raw body.

        Returns:
            True only if secret and signature are present and match
        """

    @abstractmethod
    def webhook_topic(self, envelope: WebhookEnvelope) -> Optional[str]:
        """Topic/event name carried by the webhook headers."""

    @abstractmethod
    def get_product(self, product_id: str, options: CacheOptions = None) -> Optional[Product]:
        """
        Retrieve single product by ID, cache first.

        Returns:
            Product or None if not found

        Raises:
            UpstreamError: If the platform fails
        """

    @abstractmethod
    def get_products(self, options: ProductQueryOptions = None) -> PaginatedProducts:
        """
        Retrieve one page of products.

        Raises:
            UpstreamError: If the platform fails
        """

    @abstractmethod
    def get_product_variants(self, product_id: str) -> List[ProductVariant]:
        """Variants of a product; empty list on failure."""

    @abstractmethod
    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Customer by ID, cache first; None on not found or failure."""

    @abstractmethod
    def get_customer_purchase_history(self, customer_id: str, limit: int = 10) -> List[Purchase]:
        """Recent orders of a customer, never cached; empty list on failure."""

    @abstractmethod
    def create_discount(self, discount: DiscountRequest) -> DiscountResponse:
        """
        Create a platform-native discount.

        Raises:
            UpstreamError: If the platform rejects the discount
        """

    @abstractmethod
    def apply_budget_pricing(self, order_id: str, pricing: BudgetPricing) -> OrderUpdate:
        """Apply a capped budget discount to an order. Never raises."""

    @abstractmethod
    def register_webhooks(self, webhooks: List[WebhookConfig]) -> List[str]:
        """Best-effort registration; returns IDs of created webhooks."""

    @abstractmethod
    def unregister_webhooks(self, webhook_ids: List[str]) -> List[str]:
        """Best-effort removal; returns IDs actually removed."""
