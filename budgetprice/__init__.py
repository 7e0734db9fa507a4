"""
Flask application factory and service initialization.
"""

from typing import Optional

from flask import Flask, current_app, jsonify

from budgetprice.config import Config
from budgetprice.integrations.registry import IntegrationRegistry, InMemoryStoreConfigProvider
from budgetprice.services.analytics import InMemoryCallRecorder
from budgetprice.services.budget_pricing_service import BudgetPricingService
from budgetprice.utils.logger import get_logger
from budgetprice.utils.throttle import RequestThrottle

logger = get_logger(__name__)

EXTENSION_KEY = 'budgetprice'


def create_app(registry: Optional[IntegrationRegistry] = None, config=Config):
    """
    Create and configure Flask application.

    Args:
        registry: Adapter registry to serve (built from config if omitted)
        config: Configuration class

    Returns:
        Configured Flask app instance
    """
    app = Flask(__name__)

    # Validate configuration
    try:
        config.validate()
        logger.info("Configuration validated successfully")
    except ValueError as e:
        logger.error(f"Configuration validation failed: {str(e)}")
        raise

    recorder = None
    if registry is None:
        recorder = InMemoryCallRecorder()
        registry = IntegrationRegistry(
            InMemoryStoreConfigProvider.from_config(config),
            config=config,
            recorder=recorder
        )
        logger.info("Initialized integration registry")

    app.extensions[EXTENSION_KEY] = {
        'service': BudgetPricingService(registry, config),
        'throttle': RequestThrottle(config.THROTTLE_PER_MINUTE, config.THROTTLE_PER_HOUR),
        'recorder': recorder,
    }
    logger.info("Initialized budget pricing service")

    # Register blueprints
    from budgetprice.api import pricing
    from budgetprice.webhooks import platform
    app.register_blueprint(platform.bp)
    app.register_blueprint(pricing.bp)
    logger.info("Registered blueprints")

    # Health check endpoint
    @app.route('/health', methods=['GET'])
    def health():
        """
        Health check endpoint.

        Returns:
            200 OK with active adapter count and API call counters
        """
        body = {"status": "healthy", "adapters": len(registry)}
        if recorder is not None:
            body["api_calls"] = recorder.snapshot()
        return jsonify(body), 200

    logger.info("Application initialized successfully")

    return app


def get_service() -> BudgetPricingService:
    """
    Get the service of the current app.

    Returns:
        BudgetPricingService instance
    """
    return current_app.extensions[EXTENSION_KEY]['service']


def get_throttle() -> RequestThrottle:
    return current_app.extensions[EXTENSION_KEY]['throttle']
