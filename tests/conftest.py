"""
Pytest fixtures and test configuration.
"""

import json

import pytest
import requests
from unittest.mock import Mock

from budgetprice.adapters.models import Credentials
from budgetprice.integrations.cache import ResponseCache
from budgetprice.integrations.rate_limiter import RateLimiter
from budgetprice.services.analytics import InMemoryCallRecorder


class FakeClock:
    """Manually advanced monotonic clock; sleep() advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_response(status_code=200, body=None, headers=None, text=None):
    """Build a real requests.Response."""
    response = requests.Response()
    response.status_code = status_code
    if text is not None:
        response._content = text.encode('utf-8')
    else:
        response._content = json.dumps(body if body is not None else {}).encode('utf-8')
    response.headers.update(headers or {})
    response.encoding = 'utf-8'
    return response


@pytest.fixture
def clock():
    """Fake clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def mock_session():
    """Mock HTTP session. Tests set session.request.return_value / side_effect."""
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def recorder():
    return InMemoryCallRecorder()


@pytest.fixture
def rate_limiter(clock):
    """Generous limiter on the fake clock, so adapter tests never wait."""
    return RateLimiter(
        {'shopify': (1000, 60), 'magento': (1000, 60), 'woocommerce': (1000, 60)},
        clock=clock,
        sleep=clock.sleep
    )


@pytest.fixture
def shopify_credentials():
    return Credentials(
        shop_domain='demo.myshopify.com',
        api_key='app-key',
        api_secret='app-secret',
        access_token='shpat_token',
        webhook_secret='shopify-secret'
    )


@pytest.fixture
def magento_credentials():
    return Credentials(
        shop_domain='magento.example.com',
        api_key='client-id',
        api_secret='client-secret',
        access_token='bearer-token',
        refresh_token='refresh-token',
        webhook_secret='magento-secret'
    )


@pytest.fixture
def woocommerce_credentials():
    return Credentials(
        shop_domain='woo.example.com',
        api_key='ck_key',
        api_secret='cs_secret',
        webhook_secret='woo-secret'
    )


@pytest.fixture
def make_cache(clock):
    """Factory for caches on the fake clock."""
    def factory(namespace='1:test', **kwargs):
        return ResponseCache(namespace, clock=clock, **kwargs)
    return factory
