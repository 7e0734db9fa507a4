"""
Tests for the Magento adapter.
"""

import pytest

from budgetprice.adapters.base import AuthError, UpstreamError
from budgetprice.adapters.magento import MagentoAdapter
from budgetprice.adapters.models import (
    BudgetPricing,
    Credentials,
    DiscountRequest,
    ProductQueryOptions,
    WebhookConfig,
)
from conftest import make_response

SIMPLE_PRODUCT = {
    "id": 1,
    "sku": "24-MB01",
    "name": "Joust Duffle Bag",
    "price": 34,
    "type_id": "simple",
    "created_at": "2024-01-05 10:00:00",
    "custom_attributes": [
        {"attribute_code": "url_key", "value": "joust-duffle-bag"},
        {"attribute_code": "description", "value": "<p>Sporty</p>"},
    ],
    "media_gallery_entries": [{"id": 3, "file": "/m/b/mb01-blue-0.jpg", "label": "Bag"}],
    "extension_attributes": {"stock_item": {"qty": 100}},
}


@pytest.fixture
def adapter(magento_credentials, rate_limiter, make_cache, recorder, mock_session):
    return MagentoAdapter(
        '1',
        magento_credentials,
        rate_limiter=rate_limiter,
        cache=make_cache('1:magento'),
        recorder=recorder,
        session=mock_session
    )


def _call(mock_session, index=-1):
    call = mock_session.request.call_args_list[index]
    return call.args[0], call.args[1], call.kwargs


def test_bearer_header(adapter, mock_session):
    assert mock_session.headers['Authorization'] == 'Bearer bearer-token'


def test_get_simple_product(adapter, mock_session):
    mock_session.request.return_value = make_response(200, SIMPLE_PRODUCT)

    product = adapter.get_product('24-MB01')

    _, url, _ = _call(mock_session)
    assert url == 'https://magento.example.com/rest/V1/products/24-MB01'
    assert product.title == 'Joust Duffle Bag'
    assert product.handle == 'joust-duffle-bag'
    assert product.description == '<p>Sporty</p>'
    assert len(product.variants) == 1
    assert product.variants[0].sku == '24-MB01'
    assert product.variants[0].inventory_quantity == 100
    assert product.price_range.min == product.price_range.max == 34.0
    assert product.images[0].url == (
        'https://magento.example.com/media/catalog/product/m/b/mb01-blue-0.jpg'
    )
    assert product.created_at.day == 5


def test_configurable_product_uses_children_as_variants(adapter, mock_session):
    configurable = dict(SIMPLE_PRODUCT, sku='MH01', type_id='configurable', price=0)
    mock_session.request.side_effect = [
        make_response(200, configurable),
        make_response(200, [
            {"id": 10, "sku": "MH01-XS-Black", "name": "Hoodie XS", "price": 52},
            {"id": 11, "sku": "MH01-XL-Black", "name": "Hoodie XL", "price": 58},
        ]),
    ]

    product = adapter.get_product('MH01')

    _, url, _ = _call(mock_session)
    assert url.endswith('/configurable-products/MH01/children')
    assert [v.sku for v in product.variants] == ['MH01-XS-Black', 'MH01-XL-Black']
    assert product.price_range.min == 52.0
    assert product.price_range.max == 58.0


def test_get_product_not_found(adapter, mock_session):
    mock_session.request.return_value = make_response(404, {"message": "Product not found"})

    assert adapter.get_product('missing') is None


def test_get_product_without_price(adapter, mock_session):
    payload = {"id": 2, "sku": "NO-PRICE", "name": "Mystery", "type_id": "simple"}
    mock_session.request.return_value = make_response(200, payload)

    product = adapter.get_product('NO-PRICE')

    assert product.price_range.min == 0.0
    assert product.price_range.max == 0.0
    assert product.variants[0].price == 0.0


def test_get_products_search_criteria(adapter, mock_session):
    mock_session.request.return_value = make_response(200, {
        "items": [SIMPLE_PRODUCT], "total_count": 45
    })

    page = adapter.get_products(ProductQueryOptions(
        limit=20, cursor='2', min_price=10, sort_by='price', sort_order='asc'
    ))

    _, url, kwargs = _call(mock_session)
    params = dict(kwargs['params'])
    assert url.endswith('/rest/V1/products')
    assert params['searchCriteria[pageSize]'] == '20'
    assert params['searchCriteria[currentPage]'] == '2'
    assert params['searchCriteria[filterGroups][0][filters][0][field]'] == 'price'
    assert params['searchCriteria[filterGroups][0][filters][0][conditionType]'] == 'gteq'
    assert params['searchCriteria[sortOrders][0][direction]'] == 'ASC'
    assert page.has_next_page is True
    assert page.cursor == '3'
    assert page.total_count == 45
    assert len(page.items) == 1
    assert page.items[0].price_range.min == 34.0
    assert page.items[0].variants[0].sku == '24-MB01'


def test_get_products_last_page(adapter, mock_session):
    mock_session.request.return_value = make_response(200, {"items": [], "total_count": 40})

    page = adapter.get_products(ProductQueryOptions(limit=20, cursor='2'))

    assert page.has_next_page is False
    assert page.cursor is None


def test_get_customer(adapter, mock_session):
    mock_session.request.return_value = make_response(200, {
        "id": 1, "email": "roni_cost@example.com", "firstname": "Veronica", "lastname": "Costello",
        "addresses": [{"telephone": "(555) 229-3326"}],
    })

    customer = adapter.get_customer('1')

    assert customer.name == 'Veronica Costello'
    assert customer.phone == '(555) 229-3326'


def test_purchase_history(adapter, mock_session):
    mock_session.request.return_value = make_response(200, {"items": [{
        "entity_id": 3, "increment_id": "000000003", "customer_id": 1,
        "grand_total": 36.39, "discount_amount": -4,
        "items": [{"product_id": 1, "item_id": 5, "name": "Bag", "qty_ordered": 2,
                   "price": 20, "discount_amount": 4}],
    }]})

    history = adapter.get_customer_purchase_history('1', limit=3)

    params = dict(_call(mock_session)[2]['params'])
    assert params['searchCriteria[filterGroups][0][filters][0][value]'] == '1'
    assert params['searchCriteria[pageSize]'] == '3'
    assert history[0].discount_total == 4.0
    assert history[0].items[0].discounted_price == 18.0


def test_purchase_history_absorbs_errors(adapter, mock_session):
    mock_session.request.return_value = make_response(500, text='boom')

    assert adapter.get_customer_purchase_history('1') == []


def test_create_discount_with_code(adapter, mock_session):
    mock_session.request.side_effect = [
        make_response(200, {"rule_id": 12}),
        make_response(200, {"coupon_id": 3, "code": "SAVE15"}),
    ]

    result = adapter.create_discount(DiscountRequest(value=15, code='SAVE15', usage_limit=1))

    rule = _call(mock_session, 0)[2]['json']['rule']
    assert rule['simple_action'] == 'by_percent'
    assert rule['coupon_type'] == 'SPECIFIC_COUPON'
    assert rule['use_auto_generation'] is False
    assert _call(mock_session, 1)[1].endswith('/coupons')
    assert result.id == '12'
    assert result.code == 'SAVE15'
    assert result.admin_url.endswith('/admin/sales_rule/promo_quote/edit/id/12/')


def test_create_discount_generates_code(adapter, mock_session):
    mock_session.request.side_effect = [
        make_response(200, {"rule_id": 13}),
        make_response(200, ["A1B2C3D4E5F6"]),
    ]

    result = adapter.create_discount(DiscountRequest(value=5, value_type='fixed'))

    assert _call(mock_session, 0)[2]['json']['rule']['simple_action'] == 'cart_fixed'
    assert _call(mock_session, 1)[1].endswith('/coupons/generate')
    assert result.code == 'A1B2C3D4E5F6'


def test_create_discount_propagates_errors(adapter, mock_session):
    mock_session.request.return_value = make_response(400, {"message": "bad rule"})

    with pytest.raises(UpstreamError):
        adapter.create_discount(DiscountRequest(value=5))


def test_apply_budget_pricing_uses_capped_amount(adapter, mock_session):
    mock_session.request.return_value = make_response(200, {"entity_id": 3, "grand_total": 70})

    result = adapter.apply_budget_pricing('3', BudgetPricing(
        original_price=100, budget_price=50, discount_percentage=50,
        budget_category='savings', customer_id='1'
    ))

    method, url, kwargs = _call(mock_session)
    assert method == 'PUT'
    assert url.endswith('/orders/3')
    assert kwargs['json']['entity']['discount_amount'] == 30.0
    assert result.succeeded
    assert result.updated_total == 70.0


def test_apply_budget_pricing_failure_is_reported(adapter, mock_session):
    mock_session.request.return_value = make_response(500, text='boom')

    result = adapter.apply_budget_pricing('3', BudgetPricing(
        original_price=100, budget_price=90, discount_percentage=10,
        budget_category='needs', customer_id='1'
    ))

    assert result.status == 'failed'
    assert result.error


def test_webhook_registration_is_admin_managed(adapter, mock_session):
    assert adapter.register_webhooks([WebhookConfig('catalog_product_save_after', 'https://x')]) == []
    assert adapter.unregister_webhooks(['1']) == []
    mock_session.request.assert_not_called()


def test_authenticate_and_refresh(adapter, mock_session):
    mock_session.request.side_effect = [
        make_response(200, {"access_token": "new-token", "refresh_token": "new-refresh",
                            "expires_in": 3600, "scope": "catalog sales"}),
        make_response(200, {"access_token": "newer-token", "expires_in": 3600}),
    ]

    result = adapter.authenticate(Credentials(
        shop_domain='magento.example.com', api_key='client-id', api_secret='client-secret',
        access_token='auth-code'
    ))

    _, url, kwargs = _call(mock_session, 0)
    assert url == 'https://magento.example.com/oauth/token'
    assert kwargs['json']['grant_type'] == 'authorization_code'
    assert result.scope == ['catalog', 'sales']
    assert result.expires_in == 3600
    assert mock_session.headers['Authorization'] == 'Bearer new-token'

    refreshed = adapter.refresh_token('new-refresh')

    assert _call(mock_session, 1)[2]['json']['grant_type'] == 'refresh_token'
    assert refreshed.access_token == 'newer-token'
    assert adapter.credentials.refresh_token == 'new-refresh'


def test_authenticate_failure(adapter, mock_session):
    mock_session.request.return_value = make_response(401, {"message": "invalid_client"})

    with pytest.raises(AuthError):
        adapter.refresh_token('expired')
