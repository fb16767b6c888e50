# Overview: Flask API routes for store settings (tax, receipt numbering, loyalty, messaging).

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import store_service
from ..services.inventory_service import list_low_stock
from ..services.store_service import StoreError
from ..validation import ValidationError


stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


def _forbidden_store(store_id: int):
    # MULTI-TENANT: tokens are bound to one store
    if store_id != g.store_id:
        return jsonify({"error": "Store access denied"}), 403
    return None


@stores_bp.get("/<int:store_id>/settings")
@require_auth
@require_permission("MANAGE_STORE")
def get_settings_route(store_id: int):
    denied = _forbidden_store(store_id)
    if denied:
        return denied
    try:
        return jsonify(store_service.get_store_settings(store_id)), 200
    except StoreError as e:
        return jsonify({"error": str(e)}), 404


@stores_bp.put("/<int:store_id>/settings")
@require_auth
@require_permission("MANAGE_STORE")
def update_settings_route(store_id: int):
    """
    Partially update store settings.

    Request body (all sections optional):
    {
        "receipt_prefix": "SHOP", "receipt_suffix": "A",
        "owner_phone": "0240000000",
        "tax_settings": {"enabled": true, "type": "percentage", "value": "8"},
        "loyalty": {"enabled": true, "earn_rate": "1", "min_redemption_points": 100},
        "messaging": {"notify_customer_sms": true, "receipt_template": "..."}
    }
    """
    denied = _forbidden_store(store_id)
    if denied:
        return denied
    try:
        data = request.get_json(silent=True) or {}
        settings = store_service.update_store_settings(store_id, data)
        current_app.logger.info("Store %s settings updated by %s: %s", store_id, g.employee_id, sorted(data.keys()))
        return jsonify(settings), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400
    except StoreError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update store settings")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.get("/<int:store_id>/low-stock")
@require_auth
@require_permission("VIEW_NOTIFICATIONS")
def low_stock_route(store_id: int):
    denied = _forbidden_store(store_id)
    if denied:
        return denied
    products = list_low_stock(store_id)
    return jsonify({"products": [p.to_dict() for p in products]}), 200
