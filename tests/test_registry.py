"""
Tests for the store-scoped adapter registry.
"""

import threading
import time

import pytest
from unittest.mock import Mock

from budgetprice.adapters.base import ConfigurationMissing, UnsupportedPlatformError
from budgetprice.adapters.magento import MagentoAdapter
from budgetprice.adapters.models import Credentials, Platform
from budgetprice.adapters.shopify import ShopifyAdapter
from budgetprice.adapters.woocommerce import WooCommerceAdapter
from budgetprice.config import Config
from budgetprice.integrations.registry import IntegrationRegistry, InMemoryStoreConfigProvider
from conftest import make_response


@pytest.fixture
def provider(shopify_credentials, magento_credentials, woocommerce_credentials):
    provider = InMemoryStoreConfigProvider()
    provider.register('1', 'shopify', shopify_credentials)
    provider.register('1', 'magento', magento_credentials)
    provider.register('11', 'shopify', shopify_credentials)
    provider.register('2', 'wordpress', woocommerce_credentials)
    return provider


@pytest.fixture
def registry(provider):
    return IntegrationRegistry(provider)


def test_resolve_builds_correct_adapter(registry):
    assert isinstance(registry.resolve('1', 'shopify'), ShopifyAdapter)
    assert isinstance(registry.resolve('1', 'magento'), MagentoAdapter)
    assert isinstance(registry.resolve('2', 'woocommerce'), WooCommerceAdapter)


def test_resolve_is_idempotent(registry):
    """Test that resolving twice returns the same instance."""
    first = registry.resolve('1', 'shopify')
    second = registry.resolve('1', Platform.SHOPIFY)

    assert first is second
    assert len(registry) == 1


def test_invalidate_one_entry_forces_new_instance(registry):
    first = registry.resolve('1', 'shopify')

    removed = registry.invalidate('1', 'shopify')

    assert removed == 1
    assert ('1', 'shopify') not in registry
    assert registry.resolve('1', 'shopify') is not first


def test_invalidate_store_clears_only_that_store(registry):
    """Test that invalidating store 1 leaves store 11 untouched."""
    registry.resolve('1', 'shopify')
    registry.resolve('1', 'magento')
    registry.resolve('11', 'shopify')

    removed = registry.invalidate('1')

    assert removed == 2
    assert '1:shopify' not in registry
    assert '1:magento' not in registry
    assert '11:shopify' in registry


def test_invalidate_everything(registry):
    registry.resolve('1', 'shopify')
    registry.resolve('2', 'woocommerce')

    assert registry.invalidate() == 2
    assert len(registry) == 0


def test_missing_configuration(registry):
    with pytest.raises(ConfigurationMissing):
        registry.resolve('2', 'shopify')

    assert len(registry) == 0


def test_unsupported_platform(registry):
    with pytest.raises(UnsupportedPlatformError):
        registry.resolve('1', 'bigcommerce')


def test_each_adapter_gets_own_limiter_and_cache(registry):
    shop_one = registry.resolve('1', 'shopify')
    shop_eleven = registry.resolve('11', 'shopify')

    assert shop_one.client.rate_limiter is not shop_eleven.client.rate_limiter
    assert shop_one.cache is not shop_eleven.cache
    assert shop_one.cache.namespace == '1:shopify'


def test_adapter_uses_configured_settings(provider):
    class StoreConfig(Config):
        SHOPIFY_API_VERSION = '2023-10'
        API_TIMEOUT = 3
        ORDER_DISCOUNT_CEILING = 20.0
        CACHE_MAX_ENTRIES = 50
        RATE_LIMIT_SHOPIFY = '10/30'

    adapter = IntegrationRegistry(provider, config=StoreConfig).resolve('1', 'shopify')

    assert adapter.client.base_url == 'https://demo.myshopify.com/admin/api/2023-10'
    assert adapter.client.timeout == 3
    assert adapter.discount_ceiling == 20.0
    assert adapter.cache.max_entries == 50
    assert adapter.client.rate_limiter.policies['shopify'].max_requests == 10


def test_shared_recorder_is_injected(provider, recorder):
    adapter = IntegrationRegistry(provider, recorder=recorder).resolve('1', 'shopify')

    assert adapter.client.recorder is recorder


def test_concurrent_resolution_builds_once(provider):
    """Test that racing resolvers of one key share a single construction."""
    built = []

    def slow_factory(store_id, credentials, config, **kwargs):
        time.sleep(0.05)
        adapter = Mock()
        built.append(adapter)
        return adapter

    registry = IntegrationRegistry(provider, factories={Platform.SHOPIFY: slow_factory})
    results = []
    lock = threading.Lock()

    def worker():
        adapter = registry.resolve('1', 'shopify')
        with lock:
            results.append(adapter)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(built) == 1
    assert all(result is built[0] for result in results)


def test_invalidation_keeps_rate_window(provider, mock_session):
    """Test that a rebuilt adapter keeps counting its predecessor's calls."""
    class TightConfig(Config):
        RATE_LIMIT_SHOPIFY = '3/60'

    def build_shopify(store_id, credentials, config, **kwargs):
        return ShopifyAdapter(store_id, credentials, session=mock_session, **kwargs)

    mock_session.request.return_value = make_response(200, {"product": {"id": 1, "title": "Mug"}})
    registry = IntegrationRegistry(
        provider, config=TightConfig, factories={Platform.SHOPIFY: build_shopify}
    )

    first = registry.resolve('1', 'shopify')
    for product_id in ('1', '2', '3'):
        first.get_product(product_id)
    assert first.client.rate_limiter.pending('shopify') == 3

    registry.invalidate('1', 'shopify')
    second = registry.resolve('1', 'shopify')

    assert second is not first
    assert second.client.rate_limiter is first.client.rate_limiter
    assert second.client.rate_limiter.pending('shopify') == 3
    assert second.cache is not first.cache


def test_invalidate_releases_construction_locks(registry):
    registry.resolve('1', 'shopify')
    registry.resolve('1', 'magento')
    registry.resolve('11', 'shopify')

    registry.invalidate('1', 'shopify')
    assert '1:shopify' not in registry._construction_locks
    assert '1:magento' in registry._construction_locks

    registry.invalidate('1')
    assert set(registry._construction_locks) == {'11:shopify'}

    registry.invalidate()
    assert registry._construction_locks == {}


def test_provider_from_config():
    class SeedConfig(Config):
        STORE_ID = '42'
        ECOMMERCE_PLATFORM = 'wordpress'
        ECOMMERCE_DOMAIN = 'shop.example.com'
        ECOMMERCE_API_KEY = 'ck'
        ECOMMERCE_API_SECRET = 'cs'
        WEBHOOK_SECRET = 'whsec'

    provider = InMemoryStoreConfigProvider.from_config(SeedConfig)
    credentials = provider.get_credentials('42', Platform.WOOCOMMERCE)

    assert credentials.shop_domain == 'shop.example.com'
    assert credentials.webhook_secret == 'whsec'


def test_provider_from_empty_config():
    class EmptyConfig(Config):
        STORE_ID = ''
        ECOMMERCE_PLATFORM = ''
        ECOMMERCE_DOMAIN = ''

    provider = InMemoryStoreConfigProvider.from_config(EmptyConfig)

    assert provider.get_credentials('42', 'shopify') is None


def test_provider_remove():
    provider = InMemoryStoreConfigProvider()
    provider.register('1', 'shopify', Credentials(shop_domain='a.myshopify.com'))

    assert provider.remove('1', 'shopify') is True
    assert provider.get_credentials('1', 'shopify') is None
