# backend/rental/routes/items.py
"""
Item routes: availability, BOM edges and stock ledger.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- Availability windows are inclusive on both ends.

Errors:
- Domain failures answer {"error", "kind", "detail"} with the error's HTTP status.
- Anything else is logged and answers 500.
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import RentalError, ValidationError
from ..services.concurrency import run_with_retry
from ..validation import enforce_rules_requested_quantity


items_bp = Blueprint("items", __name__, url_prefix="/api/items")


def _int_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


@items_bp.get("/<int:item_id>/availability")
def item_availability_route(item_id: int):
    """Free quantity for one item: ?start=&end=&exclude_order_id="""
    from ..services.availability_service import check_item_availability

    try:
        result = check_item_availability(
            item_id,
            request.args.get("start"),
            request.args.get("end"),
            exclude_order_id=_int_arg("exclude_order_id"),
        )
        return jsonify(result), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to check item availability")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/availability")
def multiple_availability_route():
    """
    Check several items for one window.

    Body: {"start": ..., "end": ..., "items": [{"item_id": 1, "quantity": 2}], "exclude_order_id": null}
    """
    from ..services.availability_service import check_multiple_items_availability

    payload = request.get_json(silent=True) or {}

    try:
        items = payload.get("items")
        if not isinstance(items, list) or not items:
            raise ValidationError("items must be a non-empty list")
        for entry in items:
            if not isinstance(entry, dict):
                raise ValidationError("Each item must be an object")
            enforce_rules_requested_quantity(entry.get("quantity"), entry.get("item_id"))
        result = check_multiple_items_availability(
            items,
            payload.get("start"),
            payload.get("end"),
            exclude_order_id=payload.get("exclude_order_id"),
        )
        return jsonify(result), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to check availability")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/availability/summary")
def availability_summary_route():
    from ..services.availability_service import get_availability_summary

    try:
        result = get_availability_summary(request.args.get("start"), request.args.get("end"))
        return jsonify(result), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build availability summary")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>/calendar")
def item_calendar_route(item_id: int):
    from ..services.availability_service import get_item_availability_calendar

    try:
        result = get_item_availability_calendar(item_id, request.args.get("start"), request.args.get("end"))
        return jsonify(result), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load availability calendar")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BILL OF MATERIALS
# =============================================================================

@items_bp.post("/<int:parent_id>/components")
def add_component_route(parent_id: int):
    """Body: {"child_id": 2, "quantity": 4}. 201 when created, 200 when re-quantified."""
    from ..services.bom_service import add_component

    payload = request.get_json(silent=True) or {}

    try:
        result = run_with_retry(
            lambda: add_component(parent_id, payload.get("child_id"), payload.get("quantity"))
        )
        return jsonify(result), 201 if result["created"] else 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add component")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.patch("/<int:parent_id>/components/<int:child_id>")
def update_component_route(parent_id: int, child_id: int):
    from ..services.bom_service import update_component_quantity

    payload = request.get_json(silent=True) or {}

    try:
        result = run_with_retry(
            lambda: update_component_quantity(parent_id, child_id, payload.get("quantity"))
        )
        return jsonify(result), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update component")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.delete("/<int:parent_id>/components/<int:child_id>")
def remove_component_route(parent_id: int, child_id: int):
    from ..services.bom_service import remove_component

    try:
        result = run_with_retry(lambda: remove_component(parent_id, child_id))
        return jsonify(result), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove component")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>/bom")
def bom_route(item_id: int):
    """Structure validation, component tree and buildable quantity."""
    from ..services.bom_service import calculate_composite_stock, get_bom_tree, validate_bom_structure

    try:
        validation = validate_bom_structure(item_id)
        tree = get_bom_tree(item_id, max_depth=_int_arg("max_depth"))
        stock = calculate_composite_stock(item_id)
        return jsonify({"validation": validation, "tree": tree, "stock": stock}), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load BOM")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STOCK LEDGER
# =============================================================================

@items_bp.post("/<int:item_id>/adjustments")
def adjustment_route(item_id: int):
    """
    Manual stock change.

    Body: {"delta": -2, "reason": "loss", "actor": "warehouse", "notes": "..."}
    reason is one of adjustment, repair, loss, found (default adjustment).
    """
    from ..services.ledger_service import record_manual_adjustment

    payload = request.get_json(silent=True) or {}

    try:
        result = run_with_retry(
            lambda: record_manual_adjustment(
                item_id,
                payload.get("delta"),
                payload.get("reason", "adjustment"),
                payload.get("actor"),
                payload.get("notes"),
            )
        )
        return jsonify(result), 201
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>/stock")
def stock_route(item_id: int):
    from ..services.ledger_service import current_stock

    try:
        return jsonify(current_stock(item_id)), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reconcile stock")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>/movements")
def movements_route(item_id: int):
    """Newest-first ledger rows with running totals: ?limit=50&offset=0"""
    from ..services.ledger_service import get_item_movement_history

    try:
        limit = _int_arg("limit", 50)
        offset = _int_arg("offset", 0)
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be > 0 and offset >= 0")
        return jsonify(get_item_movement_history(item_id, limit=limit, offset=offset)), 200
    except RentalError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load movement history")
        return jsonify({"error": "Internal server error"}), 500
