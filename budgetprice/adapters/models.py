"""
Platform-neutral data model.

Every adapter normalizes Shopify, Magento and WooCommerce payloads into
these dataclasses; callers never see platform-specific field names.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional


class Platform(str, Enum):
    """Supported commerce platforms."""

    SHOPIFY = 'shopify'
    MAGENTO = 'magento'
    WOOCOMMERCE = 'woocommerce'

    @classmethod
    def parse(cls, value: Any) -> "Platform":
        """
        Resolve a platform from its name.

        "wordpress" is accepted as an alias of WooCommerce.

        Raises:
            UnsupportedPlatformError: If the name is unknown
        """
        if isinstance(value, cls):
            return value

        name = str(value or '').strip().lower()
        if name == 'wordpress':
            name = 'woocommerce'

        try:
            return cls(name)
        except ValueError:
            from budgetprice.adapters.base import UnsupportedPlatformError
            raise UnsupportedPlatformError(f"Unsupported platform: {value}")


@dataclass
class Credentials:
    """Per-store platform credentials. Secrets are kept out of repr()."""

    shop_domain: str
    api_key: str = ''
    api_secret: str = field(default='', repr=False)
    access_token: str = field(default='', repr=False)
    refresh_token: str = field(default='', repr=False)
    webhook_secret: str = field(default='', repr=False)


@dataclass
class AuthResult:
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_in: Optional[int] = None
    scope: List[str] = field(default_factory=list)


@dataclass
class PriceRange:
    """Lowest and highest variant price. Always min <= max."""

    min: float = 0.0
    max: float = 0.0

    @classmethod
    def from_prices(cls, prices: Iterable[Optional[float]]) -> "PriceRange":
        """
        Build a range, ignoring missing and NaN prices.

        Args:
            prices: Candidate prices

        Returns:
            PriceRange; (0.0, 0.0) when no usable price exists
        """
        usable = [
            p for p in prices
            if p is not None and not math.isnan(p) and not math.isinf(p)
        ]
        if not usable:
            return cls(0.0, 0.0)
        return cls(min(usable), max(usable))


@dataclass
class ProductImage:
    id: str
    url: str
    alt_text: Optional[str] = None
    position: int = 0


@dataclass
class ProductVariant:
    id: str
    product_id: str
    title: str
    price: float = 0.0
    sku: Optional[str] = None
    compare_at_price: Optional[float] = None
    inventory_quantity: Optional[int] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)


@dataclass
class Product:
    """
    Universal product representation across all platforms.

    A resolvable product always carries at least one variant; adapters
    synthesize a default variant when the platform reports none.
    """

    id: str
    title: str
    handle: str = ''
    description: str = ''
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    images: List[ProductImage] = field(default_factory=list)
    variants: List[ProductVariant] = field(default_factory=list)
    price_range: PriceRange = field(default_factory=PriceRange)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Customer:
    id: str
    email: str = ''
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    total_spent: float = 0.0
    orders_count: int = 0
    created_at: Optional[datetime] = None
    last_order_date: Optional[datetime] = None

    @property
    def name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PurchaseItem:
    product_id: str
    variant_id: str
    title: str
    quantity: int
    price: float
    discounted_price: Optional[float] = None


@dataclass
class Purchase:
    """Historical order. discount_total is never negative."""

    id: str
    order_number: str
    customer_id: str
    total: float
    discount_total: float = 0.0
    items: List[PurchaseItem] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.discount_total = abs(self.discount_total or 0.0)


@dataclass
class DiscountRequest:
    """Merchant-issued discount specification."""

    value: float
    value_type: str = 'percentage'  # percentage | fixed
    applies_to: str = 'order'  # order | products | collections
    code: Optional[str] = None
    product_ids: List[str] = field(default_factory=list)
    collection_ids: List[str] = field(default_factory=list)
    customer_ids: List[str] = field(default_factory=list)
    minimum_amount: Optional[float] = None
    usage_limit: Optional[int] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    def __post_init__(self):
        if self.value_type not in ('percentage', 'fixed'):
            raise ValueError(f"Invalid value_type: {self.value_type}")
        if self.applies_to not in ('order', 'products', 'collections'):
            raise ValueError(f"Invalid applies_to: {self.applies_to}")
        if self.value < 0:
            raise ValueError("Discount value must not be negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DiscountRequest":
        return cls(
            value=float(data['value']),
            value_type=data.get('value_type', 'percentage'),
            applies_to=data.get('applies_to', 'order'),
            code=data.get('code'),
            product_ids=[str(i) for i in data.get('product_ids') or []],
            collection_ids=[str(i) for i in data.get('collection_ids') or []],
            customer_ids=[str(i) for i in data.get('customer_ids') or []],
            minimum_amount=data.get('minimum_amount'),
            usage_limit=data.get('usage_limit'),
        )


@dataclass
class DiscountResponse:
    id: str
    code: str
    admin_url: Optional[str] = None


BUDGET_CATEGORIES = ('needs', 'wants', 'savings')


@dataclass
class BudgetPricing:
    """Computed budget discount to apply to an order."""

    original_price: float
    budget_price: float
    discount_percentage: float
    budget_category: str
    customer_id: str
    applied_rule_id: Optional[int] = None

    def __post_init__(self):
        if self.budget_category not in BUDGET_CATEGORIES:
            raise ValueError(f"Invalid budget category: {self.budget_category}")


@dataclass
class OrderUpdate:
    """Tagged result of applying budget pricing; never raised."""

    order_id: str
    status: str  # success | failed
    updated_total: Optional[float] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WebhookConfig:
    topic: str
    endpoint: str
    format: str = 'json'


@dataclass
class CacheOptions:
    max_age: Optional[float] = None
    force_refresh: bool = False


@dataclass
class ProductQueryOptions(CacheOptions):
    limit: Optional[int] = None
    cursor: Optional[str] = None
    collection: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    sort_by: Optional[str] = None  # price | title | created | updated
    sort_order: str = 'desc'


@dataclass
class PaginatedProducts:
    items: List[Product] = field(default_factory=list)
    has_next_page: bool = False
    cursor: Optional[str] = None
    total_count: Optional[int] = None


@dataclass
class WebhookEnvelope:
    """
    Inbound webhook as received on the wire.

    Signatures are verified against raw_body exactly; the body is never
    re-serialized before verification.
    """

    headers: Dict[str, str]
    raw_body: bytes

    @classmethod
    def from_request(cls, headers: Mapping[str, str], body: bytes) -> "WebhookEnvelope":
        """
        Build an envelope with lower-cased header names.

        Args:
            headers: Request headers (any mapping or iterable of pairs)
            body: Raw request body
        """
        items = headers.items() if hasattr(headers, 'items') else headers
        normalized = {str(name).lower(): str(value) for name, value in items}
        if isinstance(body, str):
            body = body.encode('utf-8')
        return cls(headers=normalized, raw_body=body or b'')

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())
