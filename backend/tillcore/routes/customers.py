# Overview: Flask API routes for the customer directory; search, add and rename customers.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import customer_service
from ..validation import ConflictError, ValidationError, optional_str, require_int


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def list_customers_route():
    """
    Customer directory, newest first.

    Query params: q (name or phone fragment), limit, offset
    """
    try:
        limit = require_int(request.args.get("limit", "50"), "limit", minimum=1)
        offset = require_int(request.args.get("offset", "0"), "offset", minimum=0)
        customers, total = customer_service.list_customers(
            g.store_id,
            search=optional_str(request.args.get("q"), "q", max_length=64),
            limit=min(limit, 500),
            offset=offset,
        )
        return jsonify({
            "customers": [customer.to_dict() for customer in customers],
            "total": total,
            "limit": min(limit, 500),
            "offset": offset,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400


@customers_bp.post("")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def create_customer_route():
    """
    Request body:
    {
        "name": "Ama Mensah",
        "phone": "024 123 4567"
    }

    Returns:
        201: Created
        400: Missing name/phone
        409: Phone already on file for this store
    """
    try:
        data = request.get_json(silent=True) or {}
        customer = customer_service.create_customer(g.store_id, data.get("phone"), data.get("name"))
        return jsonify({"customer": customer.to_dict()}), 201

    except ConflictError as e:
        return jsonify({"error": str(e), "code": "Conflict"}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(g.store_id, customer_id)
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def rename_customer_route(customer_id: int):
    """Only the display name is editable; phone and points are not."""
    try:
        data = request.get_json(silent=True) or {}
        customer = customer_service.rename_customer(g.store_id, customer_id, data.get("name"))
        if not customer:
            return jsonify({"error": "Customer not found"}), 404
        return jsonify({"customer": customer.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400
    except Exception:
        current_app.logger.exception("Failed to rename customer %s", customer_id)
        return jsonify({"error": "Internal server error"}), 500
