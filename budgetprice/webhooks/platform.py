"""
Webhook ingress for commerce platform events.
"""

from flask import Blueprint, jsonify, request

from budgetprice.adapters.models import WebhookEnvelope
from budgetprice.utils.logger import get_logger, log_with_context
from budgetprice.utils.responses import exception_response, timestamp

bp = Blueprint('platform_webhooks', __name__)
logger = get_logger(__name__)


@bp.route('/webhooks/<platform>/<store_id>', methods=['POST'])
def receive_webhook(platform: str, store_id: str):
    """
    Verify a platform webhook and invalidate cached store data.

    The signature is checked against the raw request body exactly as
    received, before anything parses it.

    Returns:
    {
        "status": "success",
        "topic": "products/update",
        "invalidated": true,
        "timestamp": "2025-10-30T12:34:56Z"
    }
    """
    try:
        envelope = WebhookEnvelope.from_request(request.headers, request.get_data())

        from budgetprice import get_service
        result = get_service().process_webhook(store_id, platform, envelope)

        return jsonify({
            "status": "success",
            "topic": result['topic'],
            "invalidated": result['invalidated'],
            "timestamp": timestamp()
        }), 200

    except Exception as e:
        log_with_context(
            logger, "WARNING",
            "Webhook rejected",
            store_id=store_id,
            platform=platform,
            ip=request.remote_addr,
            error=type(e).__name__
        )
        return exception_response(e)
