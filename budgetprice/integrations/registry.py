"""
Store-scoped adapter registry.

Resolves (store_id, platform) to one memoized adapter instance, built from
credentials held by a store-configuration provider.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Mapping, Optional, Tuple

from budgetprice.adapters.base import ConfigurationMissing, PlatformAdapter
from budgetprice.adapters.magento import MagentoAdapter
from budgetprice.adapters.models import Credentials, Platform
from budgetprice.adapters.shopify import ShopifyAdapter
from budgetprice.adapters.woocommerce import WooCommerceAdapter
from budgetprice.config import Config
from budgetprice.integrations.cache import ResponseCache
from budgetprice.integrations.rate_limiter import RateLimiter
from budgetprice.services.analytics import ApiCallRecorder, LoggingCallRecorder
from budgetprice.utils.logger import get_logger, log_with_context

logger = get_logger(__name__)

AdapterFactory = Callable[..., PlatformAdapter]


class StoreConfigProvider(ABC):
    """Source of per-store platform credentials."""

    @abstractmethod
    def get_credentials(self, store_id: str, platform: Platform) -> Optional[Credentials]:
        """
        Look up credentials.

        Returns:
            Credentials, or None if the store has no integration for platform
        """
        pass


class InMemoryStoreConfigProvider(StoreConfigProvider):
    """Thread-safe in-process credentials table."""

    def __init__(self):
        self._credentials: Dict[Tuple[str, Platform], Credentials] = {}
        self._lock = threading.Lock()

    def register(self, store_id: str, platform, credentials: Credentials) -> None:
        with self._lock:
            self._credentials[(str(store_id), Platform.parse(platform))] = credentials

    def remove(self, store_id: str, platform) -> bool:
        with self._lock:
            return self._credentials.pop((str(store_id), Platform.parse(platform)), None) is not None

    def get_credentials(self, store_id: str, platform: Platform) -> Optional[Credentials]:
        with self._lock:
            return self._credentials.get((str(store_id), Platform.parse(platform)))

    @classmethod
    def from_config(cls, config=Config) -> "InMemoryStoreConfigProvider":
        """
        Build a provider seeded with the single store described by the
        STORE_ID / ECOMMERCE_* environment settings, if any.

        Args:
            config: Configuration class

        Returns:
            Provider (empty when no store is configured)
        """
        provider = cls()
        if config.STORE_ID and config.ECOMMERCE_PLATFORM and config.ECOMMERCE_DOMAIN:
            provider.register(
                config.STORE_ID,
                config.ECOMMERCE_PLATFORM,
                Credentials(
                    shop_domain=config.ECOMMERCE_DOMAIN,
                    api_key=config.ECOMMERCE_API_KEY,
                    api_secret=config.ECOMMERCE_API_SECRET,
                    access_token=config.ECOMMERCE_ACCESS_TOKEN,
                    webhook_secret=config.WEBHOOK_SECRET
                )
            )
            logger.info(f"Seeded store {config.STORE_ID} ({config.ECOMMERCE_PLATFORM}) from environment")
        return provider


def _build_shopify(store_id, credentials, config, **kwargs) -> PlatformAdapter:
    return ShopifyAdapter(
        store_id,
        credentials,
        api_version=config.SHOPIFY_API_VERSION,
        **kwargs
    )


def _build_magento(store_id, credentials, config, **kwargs) -> PlatformAdapter:
    return MagentoAdapter(store_id, credentials, **kwargs)


def _build_woocommerce(store_id, credentials, config, **kwargs) -> PlatformAdapter:
    return WooCommerceAdapter(store_id, credentials, **kwargs)


DEFAULT_FACTORIES: Dict[Platform, AdapterFactory] = {
    Platform.SHOPIFY: _build_shopify,
    Platform.MAGENTO: _build_magento,
    Platform.WOOCOMMERCE: _build_woocommerce,
}


class IntegrationRegistry:
    """
    Memoizing factory of platform adapters.

    One adapter per "{store_id}:{platform}" key. Each adapter gets its own
    RateLimiter and ResponseCache, so stores never share throttling state or
    cached data. The instance map has its own lock; first-time construction
    of a key is serialized by a per-key lock so concurrent resolvers of the
    same key get the same instance and the adapter is built once.

    Usage:
        registry = IntegrationRegistry(InMemoryStoreConfigProvider.from_config())
        adapter = registry.resolve('42', 'shopify')
    """

    def __init__(
        self,
        provider: StoreConfigProvider,
        config=Config,
        recorder: Optional[ApiCallRecorder] = None,
        factories: Mapping[Platform, AdapterFactory] = None
    ):
        """
        Initialize registry.

        Args:
            provider: Store-configuration collaborator supplying credentials
            config: Configuration class (rate limits, cache and HTTP settings)
            recorder: Call recorder shared by every adapter (per-adapter log
                recorder if omitted)
            factories: Adapter constructors per platform
        """
        self.provider = provider
        self.config = config
        self.recorder = recorder
        self.factories = dict(factories or DEFAULT_FACTORIES)
        self._instances: Dict[str, PlatformAdapter] = {}
        self._lock = threading.Lock()
        self._construction_locks: Dict[str, threading.Lock] = {}
        # Outlive their adapters so invalidation never resets a store's call window
        self._rate_limiters: Dict[str, RateLimiter] = {}

    @staticmethod
    def key_for(store_id: str, platform) -> str:
        return f"{store_id}:{Platform.parse(platform).value}"

    def resolve(self, store_id: str, platform) -> PlatformAdapter:
        """
        Get the adapter for a store, constructing it on first use.

        Args:
            store_id: Merchant store identifier
            platform: Platform name or Platform

        Returns:
            The memoized adapter (same object on every call until invalidated)

        Raises:
            UnsupportedPlatformError: If platform is unknown
            ConfigurationMissing: If the store has no credentials for platform
        """
        platform = Platform.parse(platform)
        store_id = str(store_id)
        key = self.key_for(store_id, platform)

        with self._lock:
            adapter = self._instances.get(key)
            if adapter is not None:
                return adapter
            construction_lock = self._construction_locks.setdefault(key, threading.Lock())

        with construction_lock:
            with self._lock:
                adapter = self._instances.get(key)
            if adapter is not None:
                return adapter

            adapter = self._build(store_id, platform)

            with self._lock:
                self._instances[key] = adapter

        log_with_context(
            logger, "INFO",
            "Adapter created",
            store_id=store_id,
            platform=platform.value
        )
        return adapter

    def invalidate(self, store_id: Optional[str] = None, platform=None) -> int:
        """
        Drop memoized adapters.

        No arguments clears everything; store and platform clears exactly
        one entry; store only clears every platform of that store.

        Args:
            store_id: Store to clear
            platform: Platform to clear (requires store_id)

        Returns:
            Number of adapters removed
        """
        with self._lock:
            if store_id is None:
                removed = len(self._instances)
                self._instances.clear()
                self._construction_locks.clear()
            elif platform is not None:
                key = self.key_for(store_id, platform)
                removed = 1 if self._instances.pop(key, None) else 0
                self._construction_locks.pop(key, None)
            else:
                prefix = f"{store_id}:"
                keys = [key for key in self._instances if key.startswith(prefix)]
                for key in keys:
                    del self._instances[key]
                    self._construction_locks.pop(key, None)
                removed = len(keys)

        if removed:
            log_with_context(
                logger, "INFO",
                "Adapters invalidated",
                store_id=store_id or "all",
                platform=str(getattr(platform, 'value', platform) or "all"),
                removed=removed
            )
        return removed

    def rate_limiter_for(self, store_id: str, platform) -> RateLimiter:
        """
        The outbound rate limiter for a store and platform.

        Created on first use and kept across invalidation, so a rebuilt
        adapter keeps counting against the calls its predecessor made.
        """
        key = self.key_for(store_id, platform)
        with self._lock:
            limiter = self._rate_limiters.get(key)
            if limiter is None:
                limiter = RateLimiter(self.config.rate_limits())
                self._rate_limiters[key] = limiter
            return limiter

    def __contains__(self, key) -> bool:
        if isinstance(key, tuple):
            key = self.key_for(*key)
        with self._lock:
            return key in self._instances

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)

    def _build(self, store_id: str, platform: Platform) -> PlatformAdapter:
        credentials = self.provider.get_credentials(store_id, platform)
        if credentials is None:
            raise ConfigurationMissing(store_id, platform.value)

        factory = self.factories[platform]
        return factory(
            store_id,
            credentials,
            self.config,
            rate_limiter=self.rate_limiter_for(store_id, platform),
            cache=ResponseCache(
                f"{store_id}:{platform.value}",
                max_entries=self.config.CACHE_MAX_ENTRIES,
                default_ttl=self.config.CACHE_DEFAULT_TTL
            ),
            recorder=(
                self.recorder if self.recorder is not None
                else LoggingCallRecorder(store_id, platform.value)
            ),
            timeout=self.config.API_TIMEOUT,
            discount_ceiling=self.config.ORDER_DISCOUNT_CEILING
        )
