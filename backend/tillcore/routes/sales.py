# Overview: Flask API routes for sales; quote, checkout (settlement), history and owner-only delete.

"""Sales API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import sales_service, settlement_service
from ..services.loyalty_service import RedemptionRejected
from ..services.sales_service import SaleDeleteForbidden, SaleNotFound
from ..services.sequence_service import peek_next_transaction_id
from ..services.settlement_service import InsufficientStock, SaleWriteFailed, SettlementError, SettlementRequest
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, optional_str, parse_bool, require_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _customer_fields(data: dict) -> tuple[str | None, str | None]:
    customer = data.get("customer") or {}
    if not isinstance(customer, dict):
        raise ValidationError("customer must be an object")
    name = customer.get("name", data.get("customer_name"))
    phone = customer.get("phone", data.get("customer_phone"))
    return optional_str(name, "customer.name"), phone


@sales_bp.post("/quote")
@require_auth
@require_permission("PROCESS_SALE")
def quote_route():
    """
    Price a cart without writing anything.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price": "4.50"}],
        "redeem_points": false
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        redeem = parse_bool(data.get("redeem_points"), "redeem_points")
        breakdown = settlement_service.quote_sale(g.store_id, data.get("items"), redeem_points=redeem)
        return jsonify({
            "totals": breakdown.to_dict(),
            "next_transaction_id": peek_next_transaction_id(g.store_id),
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400
    except Exception:
        current_app.logger.exception("Failed to quote sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/checkout")
@require_auth
@require_permission("PROCESS_SALE")
def checkout_route():
    """
    Settle a confirmed cart.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "payment_method": "cash",
        "customer": {"name": "Ama", "phone": "0241234567"},   (optional)
        "redeem_points": false,
        "idempotency_key": "till-3-000123",                    (optional, or Idempotency-Key header)
        "payment_reference": "TC-..."                          (optional, non-cash tenders)
    }

    Returns:
        201: Sale settled (warnings list may be non-empty)
        200: Replay of an earlier settlement with the same idempotency key
        400: Invalid input or redemption rejected
        409: Insufficient stock (negative stock disallowed)
        500: Sale record could not be written; nothing was committed
    """
    try:
        data = request.get_json(silent=True) or {}
        name, phone = _customer_fields(data)

        req = SettlementRequest(
            store_id=g.store_id,
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            employee_id=g.employee_id,
            staff_name=g.auth.staff_name,
            customer_name=name,
            customer_phone=phone,
            redeem_points=parse_bool(data.get("redeem_points"), "redeem_points"),
            idempotency_key=data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
            payment_reference=optional_str(data.get("payment_reference"), "payment_reference", max_length=128),
        )
        result = settlement_service.settle_sale(req)
        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400
    except RedemptionRejected as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 400
    except InsufficientStock as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 409
    except SaleWriteFailed as e:
        current_app.logger.error("Sale write failed: %s %s", e, e.details)
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 500
    except SettlementError as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to settle sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_permission("VIEW_SALES")
def list_sales_route():
    """
    Sales history, newest first.

    Query params: start, end (ISO-8601), customer_id, payment_method, limit, offset
    """
    try:
        args = request.args
        limit = require_int(args.get("limit", "50"), "limit", minimum=1)
        offset = require_int(args.get("offset", "0"), "offset", minimum=0)
        customer_id = args.get("customer_id")
        try:
            start = parse_iso_datetime(args.get("start"))
            end = parse_iso_datetime(args.get("end"), end_of_day=True)
        except ValueError:
            raise ValidationError("start/end must be ISO-8601 datetimes")

        sales, total = sales_service.list_sales(
            g.store_id,
            start=start,
            end=end,
            customer_id=require_int(customer_id, "customer_id", minimum=1) if customer_id else None,
            payment_method=args.get("payment_method"),
            limit=min(limit, 500),
            offset=offset,
        )
        return jsonify({
            "sales": [sale.to_dict() for sale in sales],
            "total": total,
            "limit": min(limit, 500),
            "offset": offset,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    """Get sale with line items."""
    sale = sales_service.get_sale(g.store_id, sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": sale.to_dict(include_items=True)}), 200


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_permission("DELETE_SALE")
def delete_sale_route(sale_id: int):
    """
    Delete a sale and its line items.

    Requires: DELETE_SALE permission and store ownership.
    Stock and loyalty points are not reversed.
    """
    try:
        sales_service.delete_sale(g.store_id, sale_id, is_owner=g.is_owner, employee_id=g.employee_id)
        return jsonify({"deleted": True, "sale_id": sale_id}), 200

    except SaleNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except SaleDeleteForbidden as e:
        return jsonify({"error": str(e), "details": e.details}), 403
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500
