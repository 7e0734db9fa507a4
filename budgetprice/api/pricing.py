"""
Budget pricing endpoints.
"""

from flask import Blueprint, jsonify, request

from budgetprice.services.pricing_engine import (
    calculate_budget_breakdown,
    calculate_product_pricing,
    calculate_purchase_impact,
    pricing_recommendation,
)
from budgetprice.utils.logger import get_logger, log_with_context
from budgetprice.utils.responses import error_response, exception_response, timestamp
from budgetprice.utils.validators import parse_amount

bp = Blueprint('pricing', __name__, url_prefix='/pricing')
logger = get_logger(__name__)


def _throttled(data: dict):
    """Return a 429 response if the caller is over budget, else None."""
    from budgetprice import get_throttle

    key = f"{request.remote_addr}:{data.get('customer_id', 'anonymous')}"
    decision = get_throttle().check(key)
    if decision.allowed:
        return None

    log_with_context(
        logger, "WARNING",
        "Request throttled",
        ip=request.remote_addr,
        reason=decision.reason,
        retry_after=decision.retry_after
    )
    response, status = error_response(
        decision.reason or "Too many requests", 429, retry_after=decision.retry_after
    )
    response.headers['Retry-After'] = str(decision.retry_after)
    return response, status


def _bounded(data: dict, field: str, **bounds) -> float:
    try:
        return parse_amount(data.get(field), field, **bounds)
    except ValueError:
        log_with_context(
            logger, "WARNING",
            "Rejected pricing input",
            ip=request.remote_addr,
            customer_id=data.get('customer_id'),
            field=field,
            value=str(data.get(field))[:32]
        )
        raise


def _customer_budget(data: dict, config) -> float:
    return _bounded(data, 'customer_budget', maximum=config.MAX_MONTHLY_INCOME)


def _base_price(data: dict, config) -> float:
    return _bounded(data, 'base_price', maximum=config.MAX_PRODUCT_PRICE)


@bp.route('/budget', methods=['POST'])
def budget():
    """
    Split a customer's monthly income across budget categories.

    Expected payload:
    {
        "monthly_income": 4000,
        "customer_id": "7"
    }

    Returns:
    {
        "status": "success",
        "budget": {"monthly_income": 4000.0, "needs_amount": 2000.0, ...}
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return error_response("No data", 400)

    throttled = _throttled(data)
    if throttled:
        return throttled

    try:
        from budgetprice import get_service
        config = get_service().config

        monthly_income = _bounded(
            data, 'monthly_income',
            minimum=config.MIN_MONTHLY_INCOME,
            maximum=config.MAX_MONTHLY_INCOME
        )
        breakdown = calculate_budget_breakdown(monthly_income, config.budget_allocation())

        return jsonify({
            "status": "success",
            "budget": breakdown.to_dict(),
            "timestamp": timestamp()
        }), 200

    except ValueError as e:
        return error_response(
            str(e), 400,
            min=config.MIN_MONTHLY_INCOME,
            max=config.MAX_MONTHLY_INCOME
        )


@bp.route('/calculate', methods=['POST'])
def calculate():
    """
    Price a product against a customer budget.

    Expected payload:
    {
        "customer_budget": 2000,
        "category": "wants",
        // either a store product...
        "store_id": "42", "platform": "shopify", "product_id": "123",
        // ...or an explicit price
        "base_price": 1000,
        "platform_discounts": 0,
        "max_discount_percentage": 0.1,  // may lower MAX_DISCOUNT_PERCENTAGE, never raise it
        "plan": "starter"
    }

    Returns:
    {
        "status": "success",
        "pricing": {...},
        "impact": {...},
        "recommendation": {"type": "warning", "message": "..."}
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return error_response("No data", 400)

    throttled = _throttled(data)
    if throttled:
        return throttled

    try:
        from budgetprice import get_service
        service = get_service()

        customer_budget = _customer_budget(data, service.config)
        category = data.get('category', 'wants')
        platform_discounts = parse_amount(data.get('platform_discounts', 0), 'platform_discounts')

        if data.get('product_id'):
            if not data.get('store_id') or not data.get('platform'):
                return error_response("Missing store_id or platform", 400)

            pricing = service.quote(
                str(data['store_id']),
                data['platform'],
                str(data['product_id']),
                customer_budget,
                category=category,
                platform_discounts=platform_discounts,
                max_discount_percentage=data.get('max_discount_percentage'),
                plan=data.get('plan')
            )
            if pricing is None:
                return error_response("Product not found", 404)
        else:
            pricing = calculate_product_pricing(
                '',
                _base_price(data, service.config),
                customer_budget,
                category=category,
                platform_discounts=platform_discounts,
                allocation=service.config.budget_allocation(),
                max_discount_percentage=service.discount_ceiling(
                    data.get('max_discount_percentage'), data.get('plan')
                )
            )

        breakdown = calculate_budget_breakdown(customer_budget, service.config.budget_allocation())
        impact = calculate_purchase_impact(pricing.final_price, breakdown, category)

        return jsonify({
            "status": "success",
            "pricing": pricing.to_dict(),
            "impact": impact.to_dict(),
            "recommendation": pricing_recommendation(pricing, impact),
            "timestamp": timestamp()
        }), 200

    except Exception as e:
        return exception_response(e)


@bp.route('/apply', methods=['POST'])
def apply():
    """
    Apply a budget discount to an existing order.

    Expected payload:
    {
        "store_id": "42",
        "platform": "shopify",
        "order_id": "1001",
        "customer_id": "7",
        "base_price": 1000,
        "customer_budget": 2000,
        "category": "wants"
    }

    Returns:
        200 with the OrderUpdate when applied, 502 when the platform refused it
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return error_response("No data", 400)

    throttled = _throttled(data)
    if throttled:
        return throttled

    missing = [
        key for key in ('store_id', 'platform', 'order_id', 'customer_id')
        if not data.get(key)
    ]
    if missing:
        return error_response(f"Missing fields: {', '.join(missing)}", 400)

    try:
        from budgetprice import get_service
        service = get_service()
        result = service.apply_to_order(
            str(data['store_id']),
            data['platform'],
            str(data['order_id']),
            str(data['customer_id']),
            _base_price(data, service.config),
            _customer_budget(data, service.config),
            category=data.get('category', 'wants'),
            platform_discounts=parse_amount(data.get('platform_discounts', 0), 'platform_discounts'),
            max_discount_percentage=data.get('max_discount_percentage'),
            plan=data.get('plan')
        )

        if not result.succeeded:
            return jsonify({
                "status": "error",
                "order": result.to_dict(),
                "timestamp": timestamp()
            }), 502

        return jsonify({
            "status": "success",
            "order": result.to_dict(),
            "timestamp": timestamp()
        }), 200

    except Exception as e:
        return exception_response(e)
