"""
WooCommerce REST API (wc/v3) adapter.

Auth: HTTP Basic with consumer key/secret. Keys do not expire.
Pagination: page/per_page query params, X-WP-Total / X-WP-TotalPages headers.
Webhooks: base64 HMAC-SHA256 of the raw body in X-WC-Webhook-Signature.
"""

import base64
import time
from typing import Any, Dict, List, Optional

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
from budgetprice.utils.logger import get_logger, hash_email, log_with_context
from budgetprice.utils.parsing import parse_timestamp, split_tags, to_float, to_id, to_int
from budgetprice.utils.validators import hmac_sha256_base64, signatures_match

logger = get_logger(__name__)

CUSTOMER_CACHE_SECONDS = 300
API_SCOPES = ['read', 'write']

SORT_FIELDS = {
    'price': 'price',
    'title': 'title',
    'created': 'date',
    'updated': 'modified',
}


def basic_auth_header(api_key: str, api_secret: str) -> str:
    token = base64.b64encode(f"{api_key}:{api_secret}".encode('utf-8')).decode('ascii')
    return f"Basic {token}"


class WooCommerceAdapter(PlatformAdapter):
    """WooCommerce REST adapter for one store."""

    platform = Platform.WOOCOMMERCE
    SIGNATURE_HEADER = 'x-wc-webhook-signature'
    TOPIC_HEADER = 'x-wc-webhook-topic'

    def __init__(
        self,
        store_id: str,
        credentials: Credentials,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[ResponseCache] = None,
        recorder: Optional[ApiCallRecorder] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 10,
        discount_ceiling: float = 30.0
    ):
        """
        Initialize WooCommerce adapter.

        Args:
            store_id: Merchant store identifier
            credentials: Site domain, consumer key/secret, webhook secret
            rate_limiter: Outbound throttle (a private one is created if omitted)
            cache: Response cache (a private one is created if omitted)
            recorder: Sink for API call observations
            session: HTTP session to use
            timeout: HTTP request timeout in seconds
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
            f"https://{credentials.shop_domain}/wp-json/wc/v3",
            rate_limiter if rate_limiter is not None else RateLimiter(),
            headers={
                'Authorization': basic_auth_header(credentials.api_key, credentials.api_secret),
                'Content-Type': 'application/json',
            },
            recorder=recorder,
            session=session,
            timeout=timeout
        )

    # Authentication

    def authenticate(self, credentials: Credentials) -> AuthResult:
        """
        Verify consumer key/secret with a system-status request.

        GET /system_status

        WooCommerce has no token exchange; the API key serves as the
        access token.

        Raises:
            AuthError: If the credentials are rejected
        """
        try:
            self.client.get(
                '',
                url=f"https://{credentials.shop_domain}/wp-json/wc/v3/system_status",
                endpoint='system_status',
                headers={
                    'Authorization': basic_auth_header(credentials.api_key, credentials.api_secret)
                }
            )
        except UpstreamError as e:
            raise AuthError(f"WooCommerce auth failed: {e}") from e

        return AuthResult(access_token=credentials.api_key, scope=list(API_SCOPES))

    def refresh_token(self, refresh_token: str) -> AuthResult:
        # API keys do not expire
        return AuthResult(access_token=self.credentials.api_key, scope=list(API_SCOPES))

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

        GET /products/{id}; variable products also load their variations.

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

        GET /products?per_page=&page=

        The cursor is the page number as a string; totals come from the
        X-WP-Total and X-WP-TotalPages headers.

        Raises:
            UpstreamError: If the API request fails
        """
        options = options or ProductQueryOptions()
        current_page = to_int(options.cursor, 1) or 1

        params: Dict[str, Any] = {'page': current_page}
        if options.limit:
            params['per_page'] = options.limit
        if options.min_price is not None:
            params['min_price'] = str(options.min_price)
        if options.max_price is not None:
            params['max_price'] = str(options.max_price)
        if options.tags:
            params['tag'] = ','.join(options.tags)
        if options.collection:
            params['category'] = options.collection
        if options.sort_by:
            params['orderby'] = SORT_FIELDS.get(options.sort_by, 'date')
            params['order'] = options.sort_order or 'desc'

        response = self.client.get('products', endpoint='products', params=params)
        products = [self._transform_product(item) for item in response.json() or []]

        total_pages = to_int(response.headers.get('X-WP-TotalPages'), 1)
        total_count = to_int(response.headers.get('X-WP-Total'), len(products))
        has_next_page = current_page < total_pages

        return PaginatedProducts(
            items=products,
            has_next_page=has_next_page,
            cursor=str(current_page + 1) if has_next_page else None,
            total_count=total_count
        )

    def get_product_variants(self, product_id: str) -> List[ProductVariant]:
        """
        Fetch variations of a variable product.

        GET /products/{id}/variations

        Returns:
            List of ProductVariant (empty if the request failed)
        """
        try:
            response = self.client.get(
                f"products/{product_id}/variations",
                endpoint='products/variations'
            )
            return [
                self._transform_variant(variation, str(product_id))
                for variation in response.json() or []
            ]
        except (IntegrationError, KeyError, TypeError, ValueError) as e:
            log_with_context(
                logger, "WARNING",
                "Failed to fetch variations",
                store_id=self.store_id,
                product_id=product_id,
                error=str(e)
            )
            return []

    # Customers

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """
        Fetch customer, cache first.

        GET /customers/{id}

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
        Fetch recent completed/processing orders. Never cached.

        GET /orders?customer=&per_page=&status=completed,processing

        Returns:
            List of Purchase (empty if the request failed)
        """
        try:
            response = self.client.get(
                'orders',
                endpoint='orders',
                params={
                    'customer': customer_id,
                    'per_page': limit,
                    'status': 'completed,processing',
                }
            )
            return [self._transform_order(order) for order in response.json() or []]
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
        Create a coupon.

        POST /coupons

        Customer IDs are turned into e-mail restrictions, since WooCommerce
        coupons restrict by e-mail.

        Raises:
            UpstreamError: If the request fails
        """
        if discount.value_type == 'percentage':
            discount_type = 'percent'
        else:
            discount_type = 'fixed_product' if discount.applies_to == 'products' else 'fixed_cart'

        coupon: Dict[str, Any] = {
            'code': discount.code or f"BUDGET_{int(time.time() * 1000)}",
            'discount_type': discount_type,
            'amount': str(discount.value),
            'individual_use': False,
            'exclude_sale_items': False,
            'usage_limit_per_user': 1,
            'email_restrictions': self._customer_emails(discount.customer_ids),
            'product_ids': [to_int(i) for i in discount.product_ids if to_int(i) is not None],
        }
        if discount.minimum_amount is not None:
            coupon['minimum_amount'] = str(discount.minimum_amount)
        if discount.usage_limit is not None:
            coupon['usage_limit'] = discount.usage_limit
        if discount.ends_at:
            coupon['date_expires'] = discount.ends_at.isoformat()

        response = self.client.post('coupons', endpoint='coupons', json=coupon)
        data = response.json()

        log_with_context(
            logger, "INFO",
            "Discount created",
            store_id=self.store_id,
            platform=self.platform.value,
            coupon_id=data.get('id')
        )

        return DiscountResponse(
            id=to_id(data.get('id')),
            code=data.get('code', coupon['code']),
            admin_url=(
                f"https://{self.credentials.shop_domain}"
                f"/wp-admin/post.php?post={data.get('id')}&action=edit"
            )
        )

    def apply_budget_pricing(self, order_id: str, pricing: BudgetPricing) -> OrderUpdate:
        """
        Attach a single-use budget coupon to an order.

        POST /coupons, then PUT /orders/{id} with coupon_lines and budget
        metadata. The percentage is capped at discount_ceiling. Failures are
        returned as a failed OrderUpdate, never raised.
        """
        try:
            percentage = max(0.0, min(pricing.discount_percentage, self.discount_ceiling))
            coupon = self.create_discount(DiscountRequest(
                value=round(percentage, 2),
                value_type='percentage',
                applies_to='order',
                usage_limit=1
            ))

            response = self.client.put(
                f"orders/{order_id}",
                endpoint='orders/{id}',
                json={
                    'coupon_lines': [{'code': coupon.code}],
                    'meta_data': [
                        {'key': '_budget_category', 'value': pricing.budget_category},
                        {'key': '_budget_discount', 'value': round(percentage, 2)},
                    ],
                }
            )
            return OrderUpdate(
                order_id=str(order_id),
                status='success',
                updated_total=to_float(response.json().get('total'))
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
                    'webhooks',
                    endpoint='webhooks',
                    json={
                        'name': f"BudgetPrice {webhook.topic}",
                        'topic': webhook.topic,
                        'delivery_url': webhook.endpoint,
                        'secret': self.credentials.webhook_secret,
                    }
                )
                created.append(to_id(response.json().get('id')))
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
                self.client.delete(
                    f"webhooks/{webhook_id}",
                    endpoint='webhooks',
                    params={'force': 'true'}
                )
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

    def _fetch_product(self, product_id: str) -> Optional[Product]:
        response = self.client.get(
            f"products/{product_id}",
            endpoint='products/{id}',
            allow_not_found=True
        )
        if response is None:
            return None

        data = response.json()
        variations = []
        if data.get('type') == 'variable' and data.get('variations'):
            variations = self.get_product_variants(product_id)

        return self._transform_product(data, variations)

    def _fetch_customer(self, customer_id: str) -> Optional[Customer]:
        response = self.client.get(
            f"customers/{customer_id}",
            endpoint='customers/{id}',
            allow_not_found=True
        )
        if response is None:
            return None
        return self._transform_customer(response.json())

    def _customer_emails(self, customer_ids: List[str]) -> List[str]:
        emails = []
        for customer_id in customer_ids:
            customer = self.get_customer(customer_id)
            if customer and customer.email:
                emails.append(customer.email)
            else:
                log_with_context(
                    logger, "WARNING",
                    "Coupon customer has no e-mail, restriction skipped",
                    store_id=self.store_id,
                    customer_id=customer_id
                )
        log_with_context(
            logger, "INFO",
            "Resolved coupon e-mail restrictions",
            store_id=self.store_id,
            email_hashes=[hash_email(email) for email in emails]
        )
        return emails

    def _transform_product(self, data: dict, variations: List[ProductVariant] = None) -> Product:
        product_id = to_id(data.get('id'))
        title = data.get('name') or ''
        price = to_float(data.get('price'))

        if variations:
            variants = variations
        else:
            variants = [ProductVariant(
                id=product_id,
                product_id=product_id,
                title=title,
                price=price if price is not None else 0.0,
                sku=data.get('sku') or None,
                compare_at_price=to_float(data.get('regular_price')),
                inventory_quantity=to_int(data.get('stock_quantity')),
                weight=to_float(data.get('weight')),
                weight_unit='kg'
            )]

        prices = [price]
        price_range = data.get('price_range') or {}
        prices.extend([to_float(price_range.get('min_price')), to_float(price_range.get('max_price'))])
        if variations:
            prices.extend(variant.price for variant in variations)

        brands = data.get('brands') or []

        return Product(
            id=product_id,
            title=title,
            handle=data.get('slug') or '',
            description=data.get('description') or data.get('short_description') or '',
            vendor=brands[0].get('name') if brands else None,
            product_type=data.get('type'),
            tags=split_tags(data.get('tags')),
            images=[
                ProductImage(
                    id=to_id(image.get('id')) or str(index),
                    url=image.get('src', ''),
                    alt_text=image.get('alt') or image.get('name'),
                    position=index
                )
                for index, image in enumerate(data.get('images') or [])
            ],
            variants=variants,
            price_range=PriceRange.from_prices(prices),
            created_at=parse_timestamp(data.get('date_created')),
            updated_at=parse_timestamp(data.get('date_modified'))
        )

    @staticmethod
    def _transform_variant(data: dict, product_id: str) -> ProductVariant:
        attributes = data.get('attributes') or []
        options = {
            attribute.get('name', ''): attribute.get('option', '')
            for attribute in attributes
        }
        title = data.get('name') or ' / '.join(a.get('option', '') for a in attributes)
        return ProductVariant(
            id=to_id(data.get('id')),
            product_id=product_id,
            title=title,
            price=to_float(data.get('price'), 0.0),
            sku=data.get('sku') or None,
            compare_at_price=to_float(data.get('regular_price')),
            inventory_quantity=to_int(data.get('stock_quantity')),
            weight=to_float(data.get('weight')),
            weight_unit='kg',
            options=options
        )

    @staticmethod
    def _transform_customer(data: dict) -> Customer:
        billing = data.get('billing') or {}
        shipping = data.get('shipping') or {}
        return Customer(
            id=to_id(data.get('id')),
            email=data.get('email') or '',
            first_name=data.get('first_name'),
            last_name=data.get('last_name'),
            phone=billing.get('phone') or shipping.get('phone'),
            tags=[],
            total_spent=to_float(data.get('total_spent'), 0.0),
            orders_count=to_int(data.get('orders_count'), 0),
            created_at=parse_timestamp(data.get('date_created')),
            last_order_date=parse_timestamp(data.get('last_order_date'))
        )

    @staticmethod
    def _transform_order(data: dict) -> Purchase:
        items = []
        for item in data.get('line_items') or []:
            quantity = to_int(item.get('quantity'), 0)
            line_total = to_float(item.get('total'))
            items.append(PurchaseItem(
                product_id=to_id(item.get('product_id')),
                variant_id=to_id(item.get('variation_id') or item.get('product_id')),
                title=item.get('name') or '',
                quantity=quantity,
                price=to_float(item.get('price'), 0.0),
                discounted_price=(
                    line_total / quantity if line_total is not None and quantity else None
                )
            ))

        return Purchase(
            id=to_id(data.get('id')),
            order_number=to_id(data.get('number')),
            customer_id=to_id(data.get('customer_id')),
            total=to_float(data.get('total'), 0.0),
            discount_total=to_float(data.get('discount_total'), 0.0),
            items=items,
            created_at=parse_timestamp(data.get('date_created'))
        )
