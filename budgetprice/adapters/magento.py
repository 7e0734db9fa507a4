"""
Magento 2 REST API adapter.

Auth: OAuth2 bearer token in the Authorization header.
Pagination: searchCriteria[pageSize] / searchCriteria[currentPage].
Webhooks: hex HMAC-SHA256 of the raw body in X-Magento-Webhook-Signature.

NOTE: Magento addresses catalog products by SKU, so product_id arguments
      are SKUs for this adapter.
"""

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
from budgetprice.utils.logger import get_logger, log_with_context
from budgetprice.utils.parsing import flatten_query, parse_timestamp, to_float, to_id, to_int
from budgetprice.utils.validators import hmac_sha256_hex, signatures_match

logger = get_logger(__name__)

CUSTOMER_CACHE_SECONDS = 300
DEFAULT_PAGE_SIZE = 20

SORT_FIELDS = {
    'price': 'price',
    'title': 'name',
    'created': 'created_at',
    'updated': 'updated_at',
}


class MagentoAdapter(PlatformAdapter):
    """Magento 2 REST adapter for one store."""

    platform = Platform.MAGENTO
    SIGNATURE_HEADER = 'x-magento-webhook-signature'
    TOPIC_HEADER = 'x-magento-event'

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
        Initialize Magento adapter.

        Args:
            store_id: Merchant store identifier
            credentials: Store domain, OAuth client and token, webhook secret
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
            f"https://{credentials.shop_domain}/rest/V1",
            rate_limiter if rate_limiter is not None else RateLimiter(),
            headers={
                'Authorization': f"Bearer {credentials.access_token or ''}",
                'Content-Type': 'application/json',
            },
            recorder=recorder,
            session=session,
            timeout=timeout
        )

    # Authentication

    def authenticate(self, credentials: Credentials) -> AuthResult:
        """
        Exchange an OAuth2 authorization code for tokens.

        POST https://{domain}/oauth/token (grant_type=authorization_code)

        Args:
            credentials: client api_key/api_secret; access_token holds the OAuth code

        Raises:
            AuthError: If Magento rejects the exchange
        """
        result = self._token_request(credentials.shop_domain, {
            'grant_type': 'authorization_code',
            'code': credentials.access_token,
            'client_id': credentials.api_key,
            'client_secret': credentials.api_secret,
        })
        self._use_tokens(result)
        return result

    def refresh_token(self, refresh_token: str) -> AuthResult:
        """
        Refresh the OAuth2 access token.

        Raises:
            AuthError: If the refresh token is rejected
        """
        result = self._token_request(self.credentials.shop_domain, {
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
            'client_id': self.credentials.api_key,
            'client_secret': self.credentials.api_secret,
        })
        self._use_tokens(result)
        return result

    def validate_webhook(self, envelope: WebhookEnvelope) -> bool:
        signature = envelope.header(self.SIGNATURE_HEADER)
        secret = self.credentials.webhook_secret
        if not signature or not secret:
            return False

        return signatures_match(signature.lower(), hmac_sha256_hex(secret, envelope.raw_body))

    def webhook_topic(self, envelope: WebhookEnvelope) -> Optional[str]:
        return envelope.header(self.TOPIC_HEADER)

    # Products

    def get_product(self, product_id: str, options: CacheOptions = None) -> Optional[Product]:
        """
        Fetch product by SKU, cache first.

        GET /products/{sku}; configurable products also load their children
        from GET /configurable-products/{sku}/children.

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

        GET /products?searchCriteria[pageSize]=&searchCriteria[currentPage]=

        The cursor is the page number as a string.

        Raises:
            UpstreamError: If the API request fails
        """
        options = options or ProductQueryOptions()
        page_size = options.limit or DEFAULT_PAGE_SIZE
        current_page = to_int(options.cursor, 1) or 1

        criteria: Dict[str, Any] = {
            'pageSize': page_size,
            'currentPage': current_page,
        }

        # Each filter group is ANDed with the others
        filter_groups = []
        if options.min_price is not None:
            filter_groups.append({'filters': [
                {'field': 'price', 'value': str(options.min_price), 'conditionType': 'gteq'}
            ]})
        if options.max_price is not None:
            filter_groups.append({'filters': [
                {'field': 'price', 'value': str(options.max_price), 'conditionType': 'lteq'}
            ]})
        if filter_groups:
            criteria['filterGroups'] = filter_groups

        if options.sort_by in SORT_FIELDS:
            criteria['sortOrders'] = [{
                'field': SORT_FIELDS[options.sort_by],
                'direction': 'ASC' if options.sort_order == 'asc' else 'DESC',
            }]

        response = self.client.get(
            'products',
            endpoint='products',
            params=flatten_query({'searchCriteria': criteria})
        )
        data = response.json()

        products = [self._transform_product(item) for item in data.get('items') or []]
        total_count = to_int(data.get('total_count'), 0)
        has_next_page = total_count > current_page * page_size

        return PaginatedProducts(
            items=products,
            has_next_page=has_next_page,
            cursor=str(current_page + 1) if has_next_page else None,
            total_count=total_count
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
        Fetch recent orders of a customer. Never cached.

        GET /orders?searchCriteria[filterGroups][0][filters][0][field]=customer_id...

        Returns:
            List of Purchase (empty if the request failed)
        """
        criteria = {
            'searchCriteria': {
                'filterGroups': [{'filters': [
                    {'field': 'customer_id', 'value': str(customer_id), 'conditionType': 'eq'}
                ]}],
                'sortOrders': [{'field': 'created_at', 'direction': 'DESC'}],
                'pageSize': limit,
            }
        }

        try:
            response = self.client.get('orders', endpoint='orders', params=flatten_query(criteria))
            return [self._transform_order(order) for order in response.json().get('items') or []]
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
        Create a cart price rule and its coupon.

        POST /salesRules, then POST /coupons (explicit code) or
        POST /coupons/generate (generated code).

        Raises:
            UpstreamError: If either request fails
        """
        name = discount.code or f"BUDGET_{int(time.time() * 1000)}"
        if discount.value_type == 'percentage':
            simple_action = 'by_percent'
        else:
            simple_action = 'cart_fixed' if discount.applies_to == 'order' else 'by_fixed'

        rule: Dict[str, Any] = {
            'name': name,
            'is_active': True,
            'simple_action': simple_action,
            'discount_amount': discount.value,
            'apply_to_shipping': False,
            'stop_rules_processing': False,
            'customer_group_ids': [0, 1],
            'website_ids': [1],
            'coupon_type': 'SPECIFIC_COUPON',
            'use_auto_generation': discount.code is None,
            'uses_per_customer': discount.usage_limit or 0,
        }
        if discount.usage_limit is not None:
            rule['uses_per_coupon'] = discount.usage_limit
        if discount.starts_at:
            rule['from_date'] = discount.starts_at.date().isoformat()
        if discount.ends_at:
            rule['to_date'] = discount.ends_at.date().isoformat()

        response = self.client.post('salesRules', endpoint='salesRules', json={'rule': rule})
        rule_id = response.json()['rule_id']

        if discount.code:
            response = self.client.post(
                'coupons',
                endpoint='coupons',
                json={'coupon': {
                    'rule_id': rule_id,
                    'code': discount.code,
                    'usage_limit': discount.usage_limit or 0,
                    'is_primary': True,
                }}
            )
            code = response.json().get('code', discount.code)
        else:
            response = self.client.post(
                'coupons/generate',
                endpoint='coupons/generate',
                json={'couponSpec': {
                    'rule_id': rule_id,
                    'format': 'alphanum',
                    'quantity': 1,
                    'length': 12,
                }}
            )
            codes = response.json()
            if not codes:
                raise UpstreamError(self.platform.value, 'coupons/generate', response.status_code,
                                    'No coupon code generated')
            code = codes[0]

        log_with_context(
            logger, "INFO",
            "Discount created",
            store_id=self.store_id,
            platform=self.platform.value,
            rule_id=rule_id
        )

        return DiscountResponse(
            id=to_id(rule_id),
            code=code,
            admin_url=(
                f"https://{self.credentials.shop_domain}"
                f"/admin/sales_rule/promo_quote/edit/id/{rule_id}/"
            )
        )

    def apply_budget_pricing(self, order_id: str, pricing: BudgetPricing) -> OrderUpdate:
        """
        Write a budget discount amount onto an order.

        PUT /orders/{id}

        The amount derives from the capped percentage of the original price.
        Failures are returned as a failed OrderUpdate, never raised.
        """
        try:
            percentage = max(0.0, min(pricing.discount_percentage, self.discount_ceiling))
            discount_amount = round(pricing.original_price * percentage / 100, 2)

            response = self.client.put(
                f"orders/{order_id}",
                endpoint='orders/{id}',
                json={
                    'entity': {
                        'entity_id': order_id,
                        'discount_amount': discount_amount,
                        'discount_description': f"Budget {pricing.budget_category} Discount",
                    }
                }
            )
            return OrderUpdate(
                order_id=str(order_id),
                status='success',
                updated_total=to_float(response.json().get('grand_total'))
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

    # Webhooks are configured in the Magento admin panel, not over REST

    def register_webhooks(self, webhooks: List[WebhookConfig]) -> List[str]:
        log_with_context(
            logger, "INFO",
            "Magento webhooks must be configured in the admin panel",
            store_id=self.store_id,
            topics=[webhook.topic for webhook in webhooks]
        )
        return []

    def unregister_webhooks(self, webhook_ids: List[str]) -> List[str]:
        log_with_context(
            logger, "INFO",
            "Magento webhooks must be removed in the admin panel",
            store_id=self.store_id,
            webhook_ids=list(webhook_ids)
        )
        return []

    # Helpers

    def _token_request(self, domain: str, payload: Dict[str, Any]) -> AuthResult:
        try:
            response = self.client.post(
                '',
                url=f"https://{domain}/oauth/token",
                endpoint='oauth/token',
                json=payload
            )
            data = response.json()
        except (UpstreamError, ValueError) as e:
            raise AuthError(f"Magento auth failed: {e}") from e

        if not data.get('access_token'):
            raise AuthError("Magento auth failed: no access token in response")

        return AuthResult(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            expires_in=to_int(data.get('expires_in')),
            scope=(data.get('scope') or '').split()
        )

    def _use_tokens(self, result: AuthResult) -> None:
        self.credentials.access_token = result.access_token
        if result.refresh_token:
            self.credentials.refresh_token = result.refresh_token
        self.client.set_header('Authorization', f"Bearer {result.access_token}")

    def _fetch_product(self, sku: str) -> Optional[Product]:
        response = self.client.get(f"products/{sku}", endpoint='products/{sku}', allow_not_found=True)
        if response is None:
            return None

        data = response.json()
        children = []
        if data.get('type_id') == 'configurable':
            children = self._fetch_children(sku)

        return self._transform_product(data, children)

    def _fetch_children(self, sku: str) -> List[dict]:
        try:
            response = self.client.get(
                f"configurable-products/{sku}/children",
                endpoint='configurable-products/children'
            )
            return response.json() or []
        except (IntegrationError, ValueError) as e:
            log_with_context(
                logger, "WARNING",
                "Failed to fetch configurable children",
                store_id=self.store_id,
                sku=sku,
                error=str(e)
            )
            return []

    def _fetch_customer(self, customer_id: str) -> Optional[Customer]:
        response = self.client.get(
            f"customers/{customer_id}",
            endpoint='customers/{id}',
            allow_not_found=True
        )
        if response is None:
            return None
        return self._transform_customer(response.json())

    def _transform_product(self, data: dict, children: List[dict] = None) -> Product:
        children = children or []
        product_id = to_id(data.get('id'))
        title = data.get('name') or ''

        if children:
            variants = [self._transform_variant(child, product_id) for child in children]
        else:
            variants = [self._transform_variant(data, product_id)]

        return Product(
            id=product_id,
            title=title,
            handle=_custom_attribute(data, 'url_key') or data.get('sku') or '',
            description=_custom_attribute(data, 'description') or '',
            vendor=_custom_attribute(data, 'manufacturer'),
            product_type=data.get('type_id'),
            tags=[],
            images=[
                ProductImage(
                    id=to_id(entry.get('id')) or str(index),
                    url=f"https://{self.credentials.shop_domain}/media/catalog/product{entry.get('file', '')}",
                    alt_text=entry.get('label'),
                    position=to_int(entry.get('position'), index)
                )
                for index, entry in enumerate(data.get('media_gallery_entries') or [])
            ],
            variants=variants,
            price_range=PriceRange.from_prices(
                [to_float(child.get('price')) for child in children] or [to_float(data.get('price'))]
            ),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at'))
        )

    @staticmethod
    def _transform_variant(data: dict, product_id: str) -> ProductVariant:
        stock_item = (data.get('extension_attributes') or {}).get('stock_item') or {}
        return ProductVariant(
            id=to_id(data.get('id')) or product_id,
            product_id=product_id,
            title=data.get('name') or '',
            price=to_float(data.get('price'), 0.0),
            sku=data.get('sku'),
            inventory_quantity=to_int(stock_item.get('qty')),
            weight=to_float(data.get('weight')),
            weight_unit='kg',
            options={}
        )

    @staticmethod
    def _transform_customer(data: dict) -> Customer:
        addresses = data.get('addresses') or []
        return Customer(
            id=to_id(data.get('id')),
            email=data.get('email') or '',
            first_name=data.get('firstname'),
            last_name=data.get('lastname'),
            phone=addresses[0].get('telephone') if addresses else None,
            tags=[],
            # Totals are not part of the customer resource
            total_spent=0.0,
            orders_count=0,
            created_at=parse_timestamp(data.get('created_at'))
        )

    @staticmethod
    def _transform_order(data: dict) -> Purchase:
        items = []
        for item in data.get('items') or []:
            price = to_float(item.get('price'), 0.0)
            quantity = to_int(item.get('qty_ordered'), 0)
            item_discount = abs(to_float(item.get('discount_amount'), 0.0))
            discounted = None
            if item_discount > 0 and quantity:
                discounted = price - item_discount / quantity

            items.append(PurchaseItem(
                product_id=to_id(item.get('product_id')),
                variant_id=to_id(item.get('item_id')),
                title=item.get('name') or '',
                quantity=quantity,
                price=price,
                discounted_price=discounted
            ))

        return Purchase(
            id=to_id(data.get('entity_id')),
            order_number=to_id(data.get('increment_id')),
            customer_id=to_id(data.get('customer_id')),
            total=to_float(data.get('grand_total'), 0.0),
            discount_total=abs(to_float(data.get('discount_amount'), 0.0)),
            items=items,
            created_at=parse_timestamp(data.get('created_at'))
        )


def _custom_attribute(data: dict, code: str) -> Optional[str]:
    for attribute in data.get('custom_attributes') or []:
        if attribute.get('attribute_code') == code:
            return attribute.get('value')
    return None
