# Overview: Service-layer availability calculations over time windows.

"""
Rental Availability Semantics (authoritative)

available(item, [start, end], exclude) = max(0, base - demand)

- base:   quantity_on_hand for ATOMIC; recursive BOM availability for COMPOSITE.
          SERVICE items are not stock-tracked and cannot be queried.
- demand: SUM(order_lines.quantity) for the item over orders whose status is
          RESERVED or CHECKED_OUT and whose EFFECTIVE window overlaps the
          query window, excluding `exclude_order_id` when given.

Overlap is inclusive on both ends:
    effective_start <= window_end AND effective_end >= window_start
    effective_start = COALESCE(setup_start, order_start, start_date)
    effective_end   = COALESCE(cleanup_end, order_end, return_due_date)

All functions here are pure reads: identical arguments with no intervening
writes give identical results.
"""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import func

from ..errors import NotFoundError, RentalError, ValidationError
from ..extensions import db
from ..models import BLOCKING_STATUSES, Customer, Item, Order, OrderLine
from ..time_utils import DateLike, to_utc_z
from ..validation import enforce_rules_requested_quantity, parse_window
from .bom_service import item_base_quantity


effective_start_expr = func.coalesce(Order.setup_start, Order.order_start, Order.start_date)
effective_end_expr = func.coalesce(Order.cleanup_end, Order.order_end, Order.return_due_date)


def _overlapping_lines_query(item_id: int, window_start, window_end, exclude_order_id: int | None):
    q = (
        db.session.query(OrderLine)
        .join(Order, OrderLine.order_id == Order.id)
        .filter(
            OrderLine.item_id == item_id,
            Order.status.in_(BLOCKING_STATUSES),
            effective_start_expr <= window_end,
            effective_end_expr >= window_start,
        )
    )
    if exclude_order_id is not None:
        q = q.filter(Order.id != exclude_order_id)
    return q


def _get_tracked_item(item_id: int) -> Item:
    if not item_id:
        raise ValidationError("Item ID is required")
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item not found", detail={"item_id": item_id})
    if not item.is_stock_tracked:
        raise ValidationError(
            f"Item {item.id} is a service and is not stock-tracked",
            detail={"item_id": item.id, "kind": item.kind},
        )
    return item


def _period(start, end) -> dict:
    return {"start": to_utc_z(start), "end": to_utc_z(end)}


def get_reserved_quantity_for_period(
    item_id: int,
    window_start: DateLike,
    window_end: DateLike,
    exclude_order_id: int | None = None,
) -> int:
    start, end = parse_window(window_start, window_end)
    q = _overlapping_lines_query(item_id, start, end, exclude_order_id).with_entities(
        func.coalesce(func.sum(OrderLine.quantity), 0)
    )
    return int(q.scalar() or 0)


def check_item_availability(
    item_id: int,
    window_start: DateLike,
    window_end: DateLike,
    exclude_order_id: int | None = None,
) -> dict:
    """
    Free quantity of an item over an inclusive window.

    Raises:
        InvalidWindowError: missing, unparsable or reversed bounds
        NotFoundError: item does not exist
        ValidationError: item is a SERVICE
    """
    start, end = parse_window(window_start, window_end)
    item = _get_tracked_item(item_id)

    base_quantity = item_base_quantity(item)
    reserved_quantity = get_reserved_quantity_for_period(item.id, start, end, exclude_order_id)

    return {
        "item_id": item.id,
        "item_name": item.name,
        "item_sku": item.sku,
        "kind": item.kind,
        "base_quantity": base_quantity,
        "reserved_quantity": reserved_quantity,
        "available": max(0, base_quantity - reserved_quantity),
        "period": _period(start, end),
    }


def calculate_available_quantity_for_period(
    item_id: int,
    window_start: DateLike,
    window_end: DateLike,
    exclude_order_id: int | None = None,
) -> int:
    return check_item_availability(item_id, window_start, window_end, exclude_order_id)["available"]


def get_conflicting_orders(
    item_id: int,
    window_start: DateLike,
    window_end: DateLike,
    exclude_order_id: int | None = None,
) -> list[dict]:
    """Orders holding this item during the window, earliest effective start first."""
    start, end = parse_window(window_start, window_end)
    rows = (
        _overlapping_lines_query(item_id, start, end, exclude_order_id)
        .join(Customer, Order.customer_id == Customer.id)
        .with_entities(
            Order.id,
            Order.status,
            Order.customer_id,
            Customer.display_name,
            effective_start_expr.label("effective_start"),
            effective_end_expr.label("effective_end"),
            OrderLine.quantity,
        )
        .order_by(effective_start_expr.asc(), Order.id.asc())
        .all()
    )
    return [
        {
            "order_id": row.id,
            "status": row.status,
            "customer_id": row.customer_id,
            "customer_name": row.display_name,
            "window_start": to_utc_z(row.effective_start),
            "window_end": to_utc_z(row.effective_end),
            "quantity": row.quantity,
        }
        for row in rows
    ]


def _raw_request(line: Any) -> tuple[Any, Any]:
    """Accept dict-like ({item_id, quantity}) or OrderLine-like objects."""
    if isinstance(line, dict):
        return line.get("item_id"), line.get("quantity")
    return getattr(line, "item_id", None), getattr(line, "quantity", None)


def _line_request(line: Any) -> tuple[int, int]:
    """Raises ValidationError unless quantity is a positive integer."""
    item_id, quantity = _raw_request(line)
    return item_id, enforce_rules_requested_quantity(quantity, item_id)


def detect_availability_conflicts(
    lines: Iterable[Any],
    window_start: DateLike,
    window_end: DateLike,
    exclude_order_id: int | None = None,
) -> dict:
    """
    Per-line shortfall with the specific orders causing it.

    Meant for operators: each conflict names the blocking orders (id, status,
    customer, window, quantity), not just a boolean.
    """
    start, end = parse_window(window_start, window_end)
    lines = list(lines)
    conflicts = []

    for line in lines:
        item_id, requested = _line_request(line)
        availability = check_item_availability(item_id, start, end, exclude_order_id)
        if availability["available"] < requested:
            conflicts.append({
                "item_id": availability["item_id"],
                "item_name": availability["item_name"],
                "item_sku": availability["item_sku"],
                "requested": requested,
                "available": availability["available"],
                "shortfall": requested - availability["available"],
                "period": availability["period"],
                "conflicting_orders": get_conflicting_orders(item_id, start, end, exclude_order_id),
            })

    return {
        "has_conflicts": bool(conflicts),
        "conflicts": conflicts,
        "total_items": len(lines),
        "conflict_count": len(conflicts),
    }


def check_multiple_items_availability(
    requests: Iterable[Any],
    window_start: DateLike,
    window_end: DateLike,
    exclude_order_id: int | None = None,
) -> dict:
    """
    Pre-screen several (item, quantity) requests for one window.

    Each request is evaluated independently; a failing lookup (unknown item,
    service item) is reported in that request's result instead of raised.
    """
    start, end = parse_window(window_start, window_end)
    results = []

    for request in requests:
        item_id, quantity = _raw_request(request)
        try:
            item_id, quantity = _line_request(request)
            availability = check_item_availability(item_id, start, end, exclude_order_id)
        except RentalError as e:
            results.append({
                "item_id": item_id,
                "requested_quantity": quantity,
                "is_available": False,
                "shortfall": 0,
                "error": e.to_dict(),
            })
            continue

        results.append({
            **availability,
            "requested_quantity": quantity,
            "is_available": availability["available"] >= quantity,
            "shortfall": max(0, quantity - availability["available"]),
        })

    return {
        "all_available": all(r["is_available"] for r in results),
        "total_shortfall": sum(r["shortfall"] for r in results),
        "results": results,
        "period": _period(start, end),
    }


def validate_order_availability(order_id: int) -> dict:
    """Conflict report for an order's own stock-tracked lines over its effective window."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", detail={"order_id": order_id})

    tracked = [line for line in order.lines if line.item is not None and line.item.is_stock_tracked]
    if not order.lines:
        return {
            "is_valid": False,
            "errors": ["Order has no line items"],
            "conflicts": [],
            "order": order.to_dict(include_lines=False),
        }

    result = detect_availability_conflicts(tracked, order.effective_start, order.effective_end, order.id)
    errors = [
        f"Insufficient availability for {c['item_name']}: "
        f"requested {c['requested']}, available {c['available']}"
        for c in result["conflicts"]
    ]
    return {
        "is_valid": not result["has_conflicts"],
        "errors": errors,
        "conflicts": result["conflicts"],
        "order": order.to_dict(include_lines=False),
    }


def get_item_availability_calendar(item_id: int, window_start: DateLike, window_end: DateLike) -> dict:
    start, end = parse_window(window_start, window_end)
    item = _get_tracked_item(item_id)
    base_quantity = item_base_quantity(item)

    reservations = [
        {**r, "available_after_reservation": base_quantity - r["quantity"]}
        for r in get_conflicting_orders(item.id, start, end)
    ]
    return {
        "item_id": item.id,
        "item_name": item.name,
        "item_sku": item.sku,
        "kind": item.kind,
        "base_quantity": base_quantity,
        "period": _period(start, end),
        "reservations": reservations,
    }


def get_availability_summary(window_start: DateLike, window_end: DateLike) -> dict:
    start, end = parse_window(window_start, window_end)
    items = (
        db.session.query(Item)
        .filter(Item.is_active.is_(True), Item.kind != "SERVICE")
        .order_by(Item.id)
        .all()
    )

    summary = {
        "total_items": len(items),
        "available_items": 0,
        "partially_available_items": 0,
        "unavailable_items": 0,
        "period": _period(start, end),
        "items": [],
    }

    for item in items:
        try:
            availability = check_item_availability(item.id, start, end)
        except RentalError as e:
            summary["items"].append({"item_id": item.id, "item_name": item.name, "status": "error", "error": e.to_dict()})
            continue

        if availability["available"] == 0:
            status = "unavailable"
            summary["unavailable_items"] += 1
        elif availability["available"] < availability["base_quantity"]:
            status = "partially_available"
            summary["partially_available_items"] += 1
        else:
            status = "available"
            summary["available_items"] += 1
        summary["items"].append({**availability, "status": status})

    return summary
