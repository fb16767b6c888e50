# Overview: Flask API routes for the loyalty ledger; customer lookup, manual redemption, ledger and stats.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..models import Customer
from ..services import loyalty_service
from ..services.loyalty_service import RedemptionRejected
from ..validation import ValidationError, optional_str, parse_bool, require_int


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.get("/customers/<phone>")
@require_auth
@require_permission("REDEEM_POINTS")
def lookup_customer_route(phone: str):
    """
    Find a loyalty customer by phone.

    Query params: create=true registers an unknown phone (zero points), name=<display name>.
    """
    try:
        create = parse_bool(request.args.get("create"), "create")
        customer = loyalty_service.lookup_customer(
            g.store_id,
            phone,
            name=optional_str(request.args.get("name"), "name"),
            create=create,
        )
        if not customer:
            return jsonify({"error": "Customer not found", "code": loyalty_service.CODE_CUSTOMER_NOT_FOUND}), 404

        settings = loyalty_service.get_program_settings(g.store_id)
        return jsonify({
            "customer": customer.to_dict(),
            "program": {
                "enabled": settings.enabled,
                "earn_rate": str(settings.earn_rate),
                "redemption_rate": str(settings.redemption_rate),
                "min_redemption_points": settings.min_redemption_points,
            },
            "can_redeem": settings.enabled and (customer.points or 0) >= settings.min_redemption_points,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400
    except Exception:
        current_app.logger.exception("Failed to look up loyalty customer")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/redeem")
@require_auth
@require_permission("REDEEM_POINTS")
def redeem_route():
    """
    Redeem points against a non-purchase reward.

    Request body:
    {
        "phone": "0241234567",
        "points": 50,
        "reason": "Free drink"
    }

    Returns:
        200: Redeemed; new balance and the ledger entry
        400: Rejected (InvalidAmount, CustomerNotFound, BelowMinimumBalance, InsufficientBalance)
    """
    try:
        data = request.get_json(silent=True) or {}
        customer, entry = loyalty_service.redeem_points(
            g.store_id,
            data.get("phone"),
            data.get("points"),
            optional_str(data.get("reason"), "reason"),
            employee_id=g.employee_id,
        )
        db.session.refresh(customer)
        return jsonify({
            "customer": customer.to_dict(),
            "entry": entry.to_dict(),
            "points_balance": customer.points,
        }), 200

    except RedemptionRejected as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 400
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400
    except Exception:
        current_app.logger.exception("Failed to redeem points")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/customers/<int:customer_id>/ledger")
@require_auth
@require_permission("REDEEM_POINTS")
def ledger_route(customer_id: int):
    """Ledger entries for a customer, newest first, with the ledger-derived balance."""
    try:
        customer = db.session.query(Customer).filter_by(id=customer_id, store_id=g.store_id).first()
        if not customer:
            return jsonify({"error": "Customer not found"}), 404

        limit = require_int(request.args.get("limit", "100"), "limit", minimum=1)
        entries = loyalty_service.list_entries(customer.id, limit=min(limit, 500))
        return jsonify({
            "customer": customer.to_dict(),
            "ledger_balance": loyalty_service.ledger_balance(customer.id),
            "entries": [entry.to_dict() for entry in entries],
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400


@loyalty_bp.get("/stats")
@require_auth
@require_permission("REDEEM_POINTS")
def stats_route():
    return jsonify({"stats": loyalty_service.program_stats(g.store_id)}), 200
