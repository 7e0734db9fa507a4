"""
Tests for the HTTP endpoints.
"""

import json

import pytest

from budgetprice import create_app
from budgetprice.adapters.models import Platform
from budgetprice.adapters.shopify import ShopifyAdapter
from budgetprice.config import Config
from budgetprice.integrations.registry import IntegrationRegistry, InMemoryStoreConfigProvider
from budgetprice.utils.validators import hmac_sha256_base64
from conftest import make_response

PRODUCT = {
    "id": 632910392,
    "title": "IPod Nano - 8GB",
    "variants": [{"id": 808950810, "title": "Pink", "price": "1000.00"}],
}


class RouteConfig(Config):
    THROTTLE_PER_MINUTE = 3
    THROTTLE_PER_HOUR = 100


@pytest.fixture
def registry(shopify_credentials, mock_session):
    provider = InMemoryStoreConfigProvider()
    provider.register('1', 'shopify', shopify_credentials)

    def build_shopify(store_id, credentials, config, **kwargs):
        return ShopifyAdapter(store_id, credentials, session=mock_session, **kwargs)

    return IntegrationRegistry(provider, config=RouteConfig,
                               factories={Platform.SHOPIFY: build_shopify})


@pytest.fixture
def client(registry):
    app = create_app(registry=registry, config=RouteConfig)
    app.config['TESTING'] = True
    return app.test_client()


def _signed_post(client, body: bytes, secret='shopify-secret', topic='products/update', path='/webhooks/shopify/1'):
    return client.post(
        path,
        data=body,
        content_type='application/json',
        headers={
            'X-Shopify-Hmac-Sha256': hmac_sha256_base64(secret, body),
            'X-Shopify-Topic': topic,
        }
    )


def test_health(client, registry):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'
    assert response.get_json()['adapters'] == 0


def test_health_reports_call_counters():
    class SeededConfig(Config):
        STORE_ID = '1'
        ECOMMERCE_PLATFORM = 'shopify'
        ECOMMERCE_DOMAIN = 'demo.myshopify.com'

    app = create_app(config=SeededConfig)

    body = app.test_client().get('/health').get_json()

    assert body['api_calls'] == {}


def test_webhook_valid_signature_invalidates(client, registry):
    limiter = registry.resolve('1', 'shopify').client.rate_limiter
    body = json.dumps({"id": 632910392, "title": "IPod"}).encode('utf-8')

    response = _signed_post(client, body)

    assert response.status_code == 200
    assert response.get_json()['topic'] == 'products/update'
    assert response.get_json()['invalidated'] is True
    # Product updates drop the cached adapter
    assert ('1', 'shopify') not in registry
    assert registry.resolve('1', 'shopify').client.rate_limiter is limiter


def test_webhook_bad_signature(client):
    body = b'{"id": 1}'

    response = _signed_post(client, body, secret='wrong-secret')

    assert response.status_code == 401


def test_webhook_tampered_body(client):
    body = b'{"id": 1, "price": "10.00"}'
    signature = hmac_sha256_base64('shopify-secret', body)

    response = client.post(
        '/webhooks/shopify/1',
        data=b'{"id": 1, "price": "0.01"}',
        content_type='application/json',
        headers={'X-Shopify-Hmac-Sha256': signature}
    )

    assert response.status_code == 401


def test_webhook_unknown_store(client):
    response = _signed_post(client, b'{}', path='/webhooks/shopify/99')

    assert response.status_code == 404


def test_webhook_unknown_platform(client):
    response = _signed_post(client, b'{}', path='/webhooks/bigcommerce/1')

    assert response.status_code == 400


def test_calculate_with_explicit_price(client):
    response = client.post('/pricing/calculate', json={
        "base_price": 1000, "customer_budget": 2000, "category": "wants"
    })

    body = response.get_json()
    assert response.status_code == 200
    assert body['pricing']['final_price'] == 750.0
    assert body['pricing']['discount_percentage'] == 25.0
    assert body['pricing']['within_budget'] is False
    assert body['recommendation']['type'] == 'error'


def test_calculate_for_store_product(client, mock_session):
    mock_session.request.return_value = make_response(200, {"product": PRODUCT})

    response = client.post('/pricing/calculate', json={
        "store_id": "1", "platform": "shopify", "product_id": "632910392",
        "customer_budget": 2000, "category": "wants"
    })

    assert response.status_code == 200
    assert response.get_json()['pricing']['product_id'] == '632910392'
    assert response.get_json()['pricing']['final_price'] == 750.0


def test_calculate_product_not_found(client, mock_session):
    mock_session.request.return_value = make_response(404, {"errors": "Not Found"})

    response = client.post('/pricing/calculate', json={
        "store_id": "1", "platform": "shopify", "product_id": "1", "customer_budget": 2000
    })

    assert response.status_code == 404


def test_calculate_upstream_failure(client, mock_session):
    mock_session.request.return_value = make_response(503, text='Service Unavailable')

    response = client.post('/pricing/calculate', json={
        "store_id": "1", "platform": "shopify", "product_id": "1", "customer_budget": 2000
    })

    assert response.status_code == 502
    assert response.get_json()['platform'] == 'shopify'


@pytest.mark.parametrize('payload', [
    {"customer_budget": 2000},
    {"base_price": -5, "customer_budget": 2000},
    {"base_price": 10, "customer_budget": "lots"},
    {"base_price": 10, "customer_budget": 2000, "category": "luxuries"},
])
def test_calculate_invalid_input(client, payload):
    response = client.post('/pricing/calculate', json=payload)

    assert response.status_code == 400


def test_calculate_no_data(client):
    response = client.post('/pricing/calculate', data='not json', content_type='text/plain')

    assert response.status_code == 400


def test_calculate_is_throttled(client):
    payload = {"base_price": 100, "customer_budget": 2000, "customer_id": "7"}
    for _ in range(3):
        assert client.post('/pricing/calculate', json=payload).status_code == 200

    response = client.post('/pricing/calculate', json=payload)

    assert response.status_code == 429
    assert response.get_json()['retry_after'] == 300
    assert response.headers['Retry-After'] == '300'


def test_apply(client, mock_session):
    mock_session.request.return_value = make_response(
        200, {"draft_order": {"id": 1001, "total_price": "750.00"}}
    )

    response = client.post('/pricing/apply', json={
        "store_id": "1", "platform": "shopify", "order_id": "1001", "customer_id": "7",
        "base_price": 1000, "customer_budget": 2000, "category": "wants"
    })

    assert response.status_code == 200
    assert response.get_json()['order']['status'] == 'success'
    assert response.get_json()['order']['updated_total'] == 750.0


def test_apply_platform_failure(client, mock_session):
    mock_session.request.return_value = make_response(422, {"errors": "invalid"})

    response = client.post('/pricing/apply', json={
        "store_id": "1", "platform": "shopify", "order_id": "1001", "customer_id": "7",
        "base_price": 1000, "customer_budget": 2000
    })

    assert response.status_code == 502
    assert response.get_json()['order']['status'] == 'failed'


def test_apply_missing_fields(client):
    response = client.post('/pricing/apply', json={"store_id": "1"})

    assert response.status_code == 400
    assert 'order_id' in response.get_json()['message']


def test_apply_unconfigured_store(client):
    response = client.post('/pricing/apply', json={
        "store_id": "5", "platform": "shopify", "order_id": "1", "customer_id": "7",
        "base_price": 1000, "customer_budget": 2000
    })

    assert response.status_code == 404


def test_calculate_request_cannot_raise_discount_ceiling(client):
    response = client.post('/pricing/calculate', json={
        "base_price": 1000, "customer_budget": 0, "max_discount_percentage": 1
    })

    pricing = response.get_json()['pricing']
    assert response.status_code == 200
    assert pricing['budget_discount'] == 250.0
    assert pricing['discount_percentage'] == 25.0
    assert pricing['final_price'] == 750.0


def test_calculate_request_may_lower_discount_ceiling(client):
    response = client.post('/pricing/calculate', json={
        "base_price": 1000, "customer_budget": 0, "max_discount_percentage": 0.1
    })

    assert response.get_json()['pricing']['final_price'] == 900.0


def test_apply_request_cannot_raise_discount_ceiling(client, mock_session):
    mock_session.request.return_value = make_response(
        200, {"draft_order": {"id": 1001, "total_price": "750.00"}}
    )

    response = client.post('/pricing/apply', json={
        "store_id": "1", "platform": "shopify", "order_id": "1001", "customer_id": "7",
        "base_price": 1000, "customer_budget": 0, "max_discount_percentage": 1
    })

    applied = mock_session.request.call_args.kwargs['json']['draft_order']['applied_discount']
    assert response.status_code == 200
    assert applied['value'] == '25.00'


@pytest.mark.parametrize('payload', [
    {"base_price": 100, "customer_budget": 1000001},
    {"base_price": 1000001, "customer_budget": 2000},
])
def test_calculate_rejects_unrealistic_amounts(client, payload):
    response = client.post('/pricing/calculate', json=payload)

    assert response.status_code == 400


def test_apply_rejects_unrealistic_budget(client, mock_session):
    response = client.post('/pricing/apply', json={
        "store_id": "1", "platform": "shopify", "order_id": "1001", "customer_id": "7",
        "base_price": 1000, "customer_budget": 5000000
    })

    assert response.status_code == 400
    mock_session.request.assert_not_called()


def test_budget_breakdown(client):
    response = client.post('/pricing/budget', json={"monthly_income": 4000})

    budget = response.get_json()['budget']
    assert response.status_code == 200
    assert budget['needs_amount'] == 2000.0
    assert budget['wants_amount'] == 1200.0
    assert budget['savings_amount'] == 800.0


@pytest.mark.parametrize('income', [50, 2000000, "lots", None])
def test_budget_rejects_income_out_of_bounds(client, income):
    response = client.post('/pricing/budget', json={"monthly_income": income, "customer_id": "7"})

    body = response.get_json()
    assert response.status_code == 400
    assert body['min'] == 100
    assert body['max'] == 1000000


def test_budget_income_bounds_are_configurable(registry):
    class NarrowConfig(RouteConfig):
        MIN_MONTHLY_INCOME = 1000
        MAX_MONTHLY_INCOME = 5000

    client = create_app(registry=registry, config=NarrowConfig).test_client()

    assert client.post('/pricing/budget', json={"monthly_income": 500}).status_code == 400
    assert client.post('/pricing/budget', json={"monthly_income": 6000}).status_code == 400
    assert client.post('/pricing/budget', json={"monthly_income": 3000}).status_code == 200
