"""
Shopify Admin REST API adapter.

Auth: X-Shopify-Access-Token header (OAuth code exchange in authenticate()).
Pagination: cursor based, "page_info" token in the Link response header.
Webhooks: base64 HMAC-SHA256 of the raw body in X-Shopify-Hmac-Sha256.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import requests

from budgetprice.adapters.base import (
    AuthError,
    IntegrationError,
    PlatformAdapter,
    UpstreamError,
)
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
    PriceRange,
    Product,
    ProductImage,
    ProductQueryOptions,
    ProductVariant,
    Purchase,
    PurchaseItem,
    WebhookConfig,
    WebhookEnvelope,
)
from budgetprice.clients.platform_client import PlatformClient
from budgetprice.integrations.cache import ResponseCache
from budgetprice.integrations.rate_limiter import RateLimiter
from budgetprice.services.analytics import ApiCallRecorder
from budgetprice.utils.logger import get_logger, log_with_context
from budgetprice.utils.parsing import parse_timestamp, split_tags, to_float, to_id, to_int
from budgetprice.utils.validators import hmac_sha256_base64, signatures_match

logger = get_logger(__name__)

CUSTOMER_CACHE_SECONDS = 300


class ShopifyAdapter(PlatformAdapter):
    """Shopify Admin REST adapter for one store."""

    platform = Platform.SHOPIFY
    SIGNATURE_HEADER = 'x-shopify-hmac-sha256'
    TOPIC_HEADER = 'x-shopify-topic'

    def __init__(
        self,
        store_id: str,
        credentials: Credentials,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[ResponseCache] = None,
        recorder: Optional[ApiCallRecorder] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 10,
        api_version: str = '2024-01',
        discount_ceiling: float = 30.0
    ):
        """
        Initialize Shopify adapter.

        Args:
            store_id: Merchant store identifier
            credentials: Shop domain, access token and webhook secret
            rate_limiter: Outbound throttle (a private one is created if omitted)
            cache: Response cache (a private one is created if omitted)
            recorder: Sink for API call observations
            session: HTTP session to use
            timeout: HTTP request timeout in seconds
            api_version: Admin API version, e.g. "2024-01"
            discount_ceiling: Highest percentage apply_budget_pricing will apply
        """
        self.store_id = str(store_id)
        self.credentials = credentials
        self.discount_ceiling = discount_ceiling
        self.cache = cache if cache is not None else ResponseCache(
            f"{self.store_id}:{self.platform.value}"
        )
        self.client = PlatformClient(
            self.platform.value,
            f"https://{credentials.shop_domain}/admin/api/{api_version}",
            rate_limiter if rate_limiter is not None else RateLimiter(),
            headers={
                'X-Shopify-Access-Token': credentials.access_token or '',
                'Content-Type': 'application/json',
            },
            recorder=recorder,
            session=session,
            timeout=timeout
        )

    # Authentication

    def authenticate(self, credentials: Credentials) -> AuthResult:
        """
        Exchange an OAuth authorization code for a permanent access token.

        POST https://{shop}/admin/oauth/access_token

        Args:
            credentials: api_key/api_secret of the app; access_token holds the OAuth code

        Returns:
            AuthResult with the new access token and granted scopes

        Raises:
            AuthError: If Shopify rejects the exchange
        """
        try:
            response = self.client.post(
                '',
                url=f"https://{credentials.shop_domain}/admin/oauth/access_token",
                endpoint='oauth/access_token',
                json={
                    'client_id': credentials.api_key,
                    'client_secret': credentials.api_secret,
                    'code': credentials.access_token,
                }
            )
            data = response.json()
        except (UpstreamError, ValueError) as e:
            raise AuthError(f"Shopify auth failed: {e}") from e

        access_token = data.get('access_token')
        if not access_token:
            raise AuthError("Shopify auth failed: no access token in response")

        self._use_access_token(access_token)
        return AuthResult(
            access_token=access_token,
            scope=split_tags(data.get('scope'))
        )

    def refresh_token(self, refresh_token: str) -> AuthResult:
        # Offline Shopify tokens do not expire
        return AuthResult(access_token=self.credentials.access_token or '')

    def validate_webhook(self, envelope: WebhookEnvelope) -> bool:
        signature = envelope.header(self.SIGNATURE_HEADER)
        secret = self.credentials.webhook_secret
        if not signature or not secret:
            return False

        return signatures_match(signature, hmac_sha256_base64(secret, envelope.raw_body))

    def webhook_topic(self, envelope: WebhookEnvelope) -> Optional[str]:
        return envelope.header(self.TOPIC_HEADER)

    # Products

    def get_product(self, product_id: str, options: CacheOptions = None) -> Optional[Product]:
        """
        Fetch product, cache first.

        GET /products/{id}.json

        Args:
            product_id: Shopify product ID
            options: max_age / force_refresh

        Returns:
            Product or None if not found

        Raises:
            UpstreamError: If the API request fails
        """
        options = options or CacheOptions()
        return self.cache.get_or_load(
            f"product:{product_id}",
            lambda: self._fetch_product(product_id),
            max_age=options.max_age,
            force_refresh=options.force_refresh
        )

    def get_products(self, options: ProductQueryOptions = None) -> PaginatedProducts:
        """
        Fetch one page of products.

        GET /products.json?limit=&page_info=

        Shopify rejects filters alongside page_info, so a cursor request only
        carries the limit.

        Args:
            options: limit, cursor, collection, vendor, product_type

        Returns:
            PaginatedProducts with the next page_info as cursor

        Raises:
            UpstreamError: If the API request fails
        """
        options = options or ProductQueryOptions()
        params: Dict[str, Any] = {}
        if options.limit:
            params['limit'] = options.limit

        if options.cursor:
            params['page_info'] = options.cursor
        else:
            if options.collection:
                params['collection_id'] = options.collection
            if options.vendor:
                params['vendor'] = options.vendor
            if options.product_type:
                params['product_type'] = options.product_type

        response = self.client.get('products.json', endpoint='products', params=params)
        data = response.json()

        products = [self._transform_product(item) for item in data.get('products', [])]
        next_link = response.links.get('next')
        cursor = self._extract_page_info(next_link.get('url')) if next_link else None

        return PaginatedProducts(
            items=products,
            has_next_page=cursor is not None,
            cursor=cursor
        )

    def get_product_variants(self, product_id: str) -> List[ProductVariant]:
        try:
            product = self.get_product(product_id)
        except IntegrationError as e:
            log_with_context(
                logger, "WARNING",
                "Failed to fetch variants",
                store_id=self.store_id,
                product_id=product_id,
                error=str(e)
            )
            return []

        return product.variants if product else []

    # Customers

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """
        Fetch customer, cache first.

        GET /customers/{id}.json

        Returns:
            Customer, or None if not found or the request failed
        """
        try:
            return self.cache.get_or_load(
                f"customer:{customer_id}",
                lambda: self._fetch_customer(customer_id),
                max_age=CUSTOMER_CACHE_SECONDS
            )
        except (IntegrationError, KeyError, TypeError, ValueError) as e:
            log_with_context(
                logger, "ERROR",
                "Failed to fetch customer",
                store_id=self.store_id,
                customer_id=customer_id,
                error=str(e)
            )
            return None

    def get_customer_purchase_history(self, customer_id: str, limit: int = 10) -> List[Purchase]:
        """
        Fetch recent orders of a customer. Never cached.

        GET /orders.json?customer_id=&limit=&status=any

        Returns:
            List of Purchase (empty if the request failed)
        """
        try:
            response = self.client.get(
                'orders.json',
                endpoint='orders',
                params={'customer_id': customer_id, 'limit': limit, 'status': 'any'}
            )
            return [self._transform_order(order) for order in response.json().get('orders', [])]
        except (IntegrationError, KeyError, TypeError, ValueError) as e:
            log_with_context(
                logger, "ERROR",
                "Failed to fetch purchase history",
                store_id=self.store_id,
                customer_id=customer_id,
                error=str(e)
            )
            return []

    # Discounts and orders

    def create_discount(self, discount: DiscountRequest) -> DiscountResponse:
        """
        Create a price rule and its discount code.

        POST /price_rules.json, then POST /price_rules/{id}/discount_codes.json

        Args:
            discount: Discount specification

        Returns:
            DiscountResponse with the discount code ID and admin URL

        Raises:
            UpstreamError: If either request fails
        """
        code = discount.code or f"BUDGET_{int(time.time() * 1000)}"
        starts_at = discount.starts_at or datetime.now(timezone.utc)

        price_rule: Dict[str, Any] = {
            'title': code,
            'target_type': 'line_item',
            'target_selection': 'all' if discount.applies_to == 'order' else 'entitled',
            'allocation_method': 'across',
            'value_type': 'percentage' if discount.value_type == 'percentage' else 'fixed_amount',
            'value': f"-{discount.value}",
            'customer_selection': 'prerequisite' if discount.customer_ids else 'all',
            'starts_at': starts_at.isoformat(),
        }
        if discount.customer_ids:
            price_rule['prerequisite_customer_ids'] = _numeric_ids(discount.customer_ids)
        if discount.applies_to == 'products':
            price_rule['entitled_product_ids'] = _numeric_ids(discount.product_ids)
        if discount.applies_to == 'collections':
            price_rule['entitled_collection_ids'] = _numeric_ids(discount.collection_ids)
        if discount.minimum_amount is not None:
            price_rule['prerequisite_subtotal_range'] = {
                'greater_than_or_equal_to': str(discount.minimum_amount)
            }
        if discount.usage_limit is not None:
            price_rule['usage_limit'] = discount.usage_limit
        if discount.ends_at:
            price_rule['ends_at'] = discount.ends_at.isoformat()

        response = self.client.post(
            'price_rules.json',
            endpoint='price_rules',
            json={'price_rule': price_rule}
        )
        price_rule_id = response.json()['price_rule']['id']

        response = self.client.post(
            f"price_rules/{price_rule_id}/discount_codes.json",
            endpoint='price_rules/discount_codes',
            json={'discount_code': {'code': code}}
        )
        discount_code = response.json()['discount_code']

        log_with_context(
            logger, "INFO",
            "Discount created",
            store_id=self.store_id,
            platform=self.platform.value,
            price_rule_id=price_rule_id
        )

        return DiscountResponse(
            id=to_id(discount_code.get('id')),
            code=discount_code.get('code', code),
            admin_url=f"https://{self.credentials.shop_domain}/admin/discounts/{price_rule_id}"
        )

    def apply_budget_pricing(self, order_id: str, pricing: BudgetPricing) -> OrderUpdate:
        """
        Set a percentage applied_discount on a draft order.

        PUT /draft_orders/{id}.json

        The percentage is capped at discount_ceiling. Failures are returned
        as a failed OrderUpdate, never raised.
        """
        try:
            percentage = max(0.0, min(pricing.discount_percentage, self.discount_ceiling))
            response = self.client.put(
                f"draft_orders/{order_id}.json",
                endpoint='draft_orders',
                json={
                    'draft_order': {
                        'applied_discount': {
                            'value_type': 'percentage',
                            'value': f"{percentage:.2f}",
                            'title': f"Budget {pricing.budget_category} Discount",
                        }
                    }
                }
            )
            draft_order = response.json().get('draft_order', {})
            return OrderUpdate(
                order_id=str(order_id),
                status='success',
                updated_total=to_float(draft_order.get('total_price'))
            )
        except Exception as e:
            log_with_context(
                logger, "ERROR",
                "Failed to apply budget pricing",
                store_id=self.store_id,
                order_id=order_id,
                error=str(e)
            )
            return OrderUpdate(order_id=str(order_id), status='failed', error=str(e))

    # Webhooks

    def register_webhooks(self, webhooks: List[WebhookConfig]) -> List[str]:
        created = []
        for webhook in webhooks:
            try:
                response = self.client.post(
                    'webhooks.json',
                    endpoint='webhooks',
                    json={
                        'webhook': {
                            'topic': webhook.topic,
                            'address': webhook.endpoint,
                            'format': webhook.format or 'json',
                        }
                    }
                )
                created.append(to_id(response.json().get('webhook', {}).get('id')))
            except (IntegrationError, ValueError) as e:
                log_with_context(
                    logger, "ERROR",
                    "Failed to register webhook",
                    store_id=self.store_id,
                    topic=webhook.topic,
                    error=str(e)
                )
        return created

    def unregister_webhooks(self, webhook_ids: List[str]) -> List[str]:
        removed = []
        for webhook_id in webhook_ids:
            try:
                self.client.delete(f"webhooks/{webhook_id}.json", endpoint='webhooks')
                removed.append(str(webhook_id))
            except IntegrationError as e:
                log_with_context(
                    logger, "ERROR",
                    "Failed to unregister webhook",
                    store_id=self.store_id,
                    webhook_id=webhook_id,
                    error=str(e)
                )
        return removed

    # Helpers

    def _use_access_token(self, access_token: str) -> None:
        self.credentials.access_token = access_token
        self.client.set_header('X-Shopify-Access-Token', access_token)

    def _fetch_product(self, product_id: str) -> Optional[Product]:
        response = self.client.get(
            f"products/{product_id}.json",
            endpoint='products/{id}',
            allow_not_found=True
        )
        if response is None:
            return None

        payload = response.json().get('product')
        return self._transform_product(payload) if payload else None

    def _fetch_customer(self, customer_id: str) -> Optional[Customer]:
        response = self.client.get(
            f"customers/{customer_id}.json",
            endpoint='customers/{id}',
            allow_not_found=True
        )
        if response is None:
            return None

        payload = response.json().get('customer')
        return self._transform_customer(payload) if payload else None

    def _transform_product(self, data: dict) -> Product:
        product_id = to_id(data.get('id'))
        title = data.get('title') or ''
        variants = [self._transform_variant(v, product_id) for v in data.get('variants') or []]

        if not variants:
            variants = [ProductVariant(id=product_id, product_id=product_id, title=title)]

        return Product(
            id=product_id,
            title=title,
            handle=data.get('handle') or '',
            description=data.get('body_html') or '',
            vendor=data.get('vendor'),
            product_type=data.get('product_type'),
            tags=split_tags(data.get('tags')),
            images=[
                ProductImage(
                    id=to_id(image.get('id')),
                    url=image.get('src', ''),
                    alt_text=image.get('alt'),
                    position=to_int(image.get('position'), 0)
                )
                for image in data.get('images') or []
            ],
            variants=variants,
            price_range=PriceRange.from_prices(
                to_float(v.get('price')) for v in data.get('variants') or []
            ),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at'))
        )

    @staticmethod
    def _transform_variant(data: dict, product_id: str) -> ProductVariant:
        options = {
            key: data[key] for key in ('option1', 'option2', 'option3')
            if data.get(key) is not None
        }
        return ProductVariant(
            id=to_id(data.get('id')),
            product_id=product_id,
            title=data.get('title') or '',
            price=to_float(data.get('price'), 0.0),
            sku=data.get('sku') or None,
            compare_at_price=to_float(data.get('compare_at_price')),
            inventory_quantity=to_int(data.get('inventory_quantity')),
            weight=to_float(data.get('weight')),
            weight_unit=data.get('weight_unit'),
            options=options
        )

    @staticmethod
    def _transform_customer(data: dict) -> Customer:
        return Customer(
            id=to_id(data.get('id')),
            email=data.get('email') or '',
            first_name=data.get('first_name'),
            last_name=data.get('last_name'),
            phone=data.get('phone'),
            tags=split_tags(data.get('tags')),
            total_spent=to_float(data.get('total_spent'), 0.0),
            orders_count=to_int(data.get('orders_count'), 0),
            created_at=parse_timestamp(data.get('created_at')),
            last_order_date=(
                parse_timestamp(data.get('updated_at')) if data.get('last_order_id') else None
            )
        )

    @staticmethod
    def _transform_order(data: dict) -> Purchase:
        items = []
        for item in data.get('line_items') or []:
            price = to_float(item.get('price'), 0.0)
            allocations = item.get('discount_allocations') or []
            discounted = None
            if allocations:
                discounted = price - sum(to_float(a.get('amount'), 0.0) for a in allocations)

            items.append(PurchaseItem(
                product_id=to_id(item.get('product_id')),
                variant_id=to_id(item.get('variant_id')),
                title=item.get('title') or '',
                quantity=to_int(item.get('quantity'), 0),
                price=price,
                discounted_price=discounted
            ))

        return Purchase(
            id=to_id(data.get('id')),
            order_number=to_id(data.get('order_number')),
            customer_id=to_id((data.get('customer') or {}).get('id')),
            total=to_float(data.get('total_price'), 0.0),
            discount_total=to_float(data.get('total_discounts'), 0.0),
            items=items,
            created_at=parse_timestamp(data.get('created_at'))
        )

    @staticmethod
    def _extract_page_info(url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        values = parse_qs(urlparse(url).query).get('page_info')
        return values[0] if values else None


def _numeric_ids(ids: List[str]) -> List[Any]:
    return [int(i) if str(i).isdigit() else i for i in ids]
