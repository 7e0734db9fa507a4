"""
JSON error responses for the HTTP blueprints.
"""

from datetime import datetime, timezone

from flask import jsonify

from budgetprice.adapters.base import (
    ConfigurationMissing,
    SignatureInvalid,
    UnsupportedPlatformError,
    UpstreamError,
)
from budgetprice.utils.logger import get_logger

logger = get_logger(__name__)


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def error_response(message: str, status: int, **extra):
    body = {"status": "error", "message": message, "timestamp": timestamp()}
    body.update(extra)
    return jsonify(body), status


def exception_response(error: Exception):
    """
    Map an exception to a JSON error response.

    SignatureInvalid -> 401, ConfigurationMissing -> 404,
    UnsupportedPlatformError / ValueError -> 400, UpstreamError -> 502,
    anything else -> 500.
    """
    if isinstance(error, SignatureInvalid):
        return error_response("Unauthorized", 401)
    if isinstance(error, ConfigurationMissing):
        return error_response(str(error), 404)
    if isinstance(error, (UnsupportedPlatformError, ValueError)):
        return error_response(str(error), 400)
    if isinstance(error, UpstreamError):
        logger.error(f"Upstream platform error: {error}")
        return error_response("Upstream platform error", 502, platform=error.platform)

    logger.exception("Unexpected error", exc_info=error)
    return error_response("Internal server error", 500)
