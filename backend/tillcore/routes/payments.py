# Overview: Flask API routes for the payment gateway; hosted checkout for non-cash tenders.

"""
Payment gateway API routes.

Non-cash tenders are initialized here before checkout; the returned
reference is passed to /api/sales/checkout as payment_reference. Gateway
failures come back as 502 with the gateway's message, never as 500.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import payment_gateway
from ..validation import ValidationError, optional_str


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/initialize")
@require_auth
@require_permission("PROCESS_SALE")
def initialize_route():
    """
    Request body:
    {
        "amount": "55.00",
        "customer_ref": "ama@example.com",
        "description": "Sale at Main Store",
        "channels": ["mobile_money"]           (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        channels = data.get("channels")
        if channels is not None and (not isinstance(channels, list) or not all(isinstance(c, str) for c in channels)):
            raise ValidationError("channels must be a list of strings")

        result = payment_gateway.initialize_payment(
            data.get("amount"),
            optional_str(data.get("customer_ref"), "customer_ref"),
            optional_str(data.get("description"), "description"),
            channels=channels,
            metadata={"store_id": g.store_id, "employee_id": g.employee_id},
        )
        return jsonify(result.to_dict()), 200 if result.ok else 502

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400
    except Exception:
        current_app.logger.exception("Failed to initialize payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/verify/<reference>")
@require_auth
@require_permission("PROCESS_SALE")
def verify_route(reference: str):
    result = payment_gateway.get_gateway().verify_payment(reference)
    if result.error:
        return jsonify({"reference": reference, "paid": False, "error": result.error}), 502
    return jsonify({"reference": reference, "paid": result.paid, "status": result.status}), 200
