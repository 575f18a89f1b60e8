# backend/rental/routes/orders.py
"""
Order routes: draft order editing, lifecycle transitions and conflict reports.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- An order carries EITHER start_date/return_due_date OR order_start/order_end
  (with optional setup_start/cleanup_end buffers).
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import RentalError, ValidationError
from ..models import Order
from ..services.concurrency import run_with_retry
from ..validation import ModelValidationPolicy, validate_payload


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_id",
        "sales_person_id",
        "start_date",
        "return_due_date",
        "setup_start",
        "order_start",
        "order_end",
        "cleanup_end",
        "notes",
    },
    required_on_create={"customer_id"},
)


@orders_bp.post("")
def create_order_route():
    """
    Create a DRAFT order.

    Body: {"customer_id": 1, "start_date": "...", "return_due_date": "...",
           "lines": [{"item_id": 3, "quantity": 2, "price_per_day_cents": 1500}]}
    """
    from ..services.order_service import create_order

    payload = dict(request.get_json(silent=True) or {})
    lines = payload.pop("lines", None)

    try:
        patch = validate_payload(model=Order, payload=payload, policy=ORDER_CREATE_POLICY, partial=False)
        if lines is not None and not isinstance(lines, list):
            raise ValidationError("lines must be a list")
        order = create_order(lines=lines, **patch)
        return jsonify({"order": order.to_dict()}), 201
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    from ..services.order_service import get_order
    from ..services.order_status_service import get_valid_transitions

    try:
        order = get_order(order_id)
        transitions = get_valid_transitions(order_id)
        return jsonify({"order": order.to_dict(), "valid_transitions": transitions["valid_transitions"]}), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    from ..services.order_service import delete_order

    try:
        run_with_retry(lambda: delete_order(order_id))
        return jsonify({"deleted": order_id}), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LINES (DRAFT only)
# =============================================================================

@orders_bp.post("/<int:order_id>/lines")
def add_line_route(order_id: int):
    """Body: {"item_id": 3, "quantity": 2, "price_per_day_cents": 1500}"""
    from ..services.order_service import add_line

    payload = request.get_json(silent=True) or {}

    try:
        line = run_with_retry(
            lambda: add_line(
                order_id,
                payload.get("item_id"),
                payload.get("quantity"),
                payload.get("price_per_day_cents"),
            )
        )
        return jsonify({"line": line.to_dict()}), 201
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add order line")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/lines/<int:line_id>")
def update_line_route(order_id: int, line_id: int):
    from ..services.order_service import update_line

    payload = request.get_json(silent=True) or {}

    try:
        line = run_with_retry(
            lambda: update_line(
                order_id,
                line_id,
                quantity=payload.get("quantity"),
                price_per_day_cents=payload.get("price_per_day_cents"),
            )
        )
        return jsonify({"line": line.to_dict()}), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order line")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/lines/<int:line_id>")
def remove_line_route(order_id: int, line_id: int):
    from ..services.order_service import remove_line

    try:
        result = run_with_retry(lambda: remove_line(order_id, line_id))
        return jsonify(result), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove order line")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@orders_bp.post("/<int:order_id>/transition")
def transition_route(order_id: int):
    """
    Body: {"status": "RESERVED", "actor": "counter-1", "notes": "..."}

    409 for illegal transitions and availability conflicts; the conflict
    detail lists every short line with the orders holding the stock.
    """
    from ..services.order_status_service import transition

    payload = request.get_json(silent=True) or {}

    try:
        result = run_with_retry(
            lambda: transition(order_id, payload.get("status"), payload.get("actor"), payload.get("notes"))
        )
        return jsonify(result.to_dict()), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to transition order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/transition/bulk")
def bulk_transition_route():
    """Body: {"order_ids": [1, 2], "status": "CANCELLED", "actor": "ops"}"""
    from ..services.order_status_service import bulk_transition

    payload = request.get_json(silent=True) or {}

    try:
        order_ids = payload.get("order_ids")
        if not isinstance(order_ids, list):
            raise ValidationError("order_ids must be a list")
        result = bulk_transition(order_ids, payload.get("status"), payload.get("actor"), payload.get("notes"))
        return jsonify(result), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to bulk transition orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/conflicts")
def order_conflicts_route(order_id: int):
    from ..services.availability_service import validate_order_availability

    try:
        return jsonify(validate_order_availability(order_id)), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to check order conflicts")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
def order_history_route(order_id: int):
    from ..services.ledger_service import get_order_movement_history
    from ..services.order_status_service import get_status_history

    try:
        status_history = get_status_history(order_id)
        movements = get_order_movement_history(order_id)
        return jsonify({**status_history, "movements": movements["order_movements"]}), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load order history")
        return jsonify({"error": "Internal server error"}), 500
