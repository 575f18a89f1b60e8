# Overview: Service-layer operations for draft orders and their lines.

from __future__ import annotations

from typing import Any

from flask import current_app

from ..errors import NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Customer, Item, Order, OrderLine, OrderStatus
from ..time_utils import to_utc_naive
from ..validation import enforce_rules_line, enforce_rules_order_window
from .concurrency import lock_for_update, unit_of_work
from .notifications import OrderChangeEvent, publish


WINDOW_FIELDS = ("start_date", "return_due_date", "setup_start", "order_start", "order_end", "cleanup_end")


def _normalize_window(values: dict) -> dict:
    window = {}
    for field in WINDOW_FIELDS:
        value = values.get(field)
        if value is None or value == "":
            window[field] = None
            continue
        try:
            window[field] = to_utc_naive(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", detail={"field": field})
    return window


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", detail={"order_id": order_id})
    return order


def _get_draft_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", detail={"order_id": order_id})
    if not order.is_draft:
        raise StateConflictError(
            f"Order {order.id} is {order.status}; lines can only be changed while DRAFT",
            detail={"order_id": order.id, "status": order.status},
        )
    return order


def _get_line_item(item_id: int) -> Item:
    if not item_id:
        raise ValidationError("Item ID is required")
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item not found", detail={"item_id": item_id})
    if not item.is_active:
        raise ValidationError(f"Item {item.id} is inactive", detail={"item_id": item.id})
    return item


def _build_line(order: Order, item_id: int, quantity: Any, price_per_day_cents: Any = None) -> OrderLine:
    item = _get_line_item(item_id)
    if price_per_day_cents is None:
        price_per_day_cents = item.price_per_day_cents
    enforce_rules_line(quantity, price_per_day_cents)

    if any(line.item_id == item.id for line in order.lines):
        raise ValidationError(
            f"Item {item.id} is already on order {order.id}; update that line instead",
            detail={"order_id": order.id, "item_id": item.id},
        )

    line = OrderLine(item_id=item.id, item=item, quantity=quantity, price_per_day_cents=price_per_day_cents)
    order.lines.append(line)
    return line


def create_order(
    *,
    customer_id: int,
    lines: list[dict] | None = None,
    notes: str | None = None,
    sales_person_id: int | None = None,
    **window: Any,
) -> Order:
    """
    Create a DRAFT order.

    Window keyword args are the simple form (start_date, return_due_date) or
    the extended form (order_start, order_end, optional setup_start /
    cleanup_end). Lines are optional dicts {item_id, quantity,
    price_per_day_cents?}; price defaults to the item's daily price.
    """
    unknown = sorted(set(window) - set(WINDOW_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown field: {unknown[0]}")

    normalized = _normalize_window(window)
    enforce_rules_order_window(normalized)

    with unit_of_work():
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found", detail={"customer_id": customer_id})

        order = Order(
            customer=customer,
            sales_person_id=sales_person_id,
            status=OrderStatus.DRAFT.value,
            notes=notes,
            **normalized,
        )
        db.session.add(order)

        for line_data in lines or []:
            if not isinstance(line_data, dict):
                raise ValidationError("Each line must be an object")
            _build_line(order, line_data.get("item_id"), line_data.get("quantity"), line_data.get("price_per_day_cents"))

        db.session.flush()

    current_app.logger.info("Created order %s for customer %s", order.id, customer_id)
    publish(OrderChangeEvent(order_id=order.id, change="created", new_status=order.status))
    return order


def add_line(order_id: int, item_id: int, quantity: int, price_per_day_cents: int | None = None) -> OrderLine:
    with unit_of_work():
        order = _get_draft_order(order_id)
        line = _build_line(order, item_id, quantity, price_per_day_cents)
        db.session.flush()

    publish(OrderChangeEvent(order_id=order_id, change="lines_changed", new_status=OrderStatus.DRAFT.value))
    return line


def _get_order_line(order: Order, line_id: int) -> OrderLine:
    for line in order.lines:
        if line.id == line_id:
            return line
    raise NotFoundError("Order line not found", detail={"order_id": order.id, "line_id": line_id})


def update_line(
    order_id: int,
    line_id: int,
    *,
    quantity: int | None = None,
    price_per_day_cents: int | None = None,
) -> OrderLine:
    with unit_of_work():
        order = _get_draft_order(order_id)
        line = _get_order_line(order, line_id)

        new_quantity = line.quantity if quantity is None else quantity
        new_price = line.price_per_day_cents if price_per_day_cents is None else price_per_day_cents
        enforce_rules_line(new_quantity, new_price)

        line.quantity = new_quantity
        line.price_per_day_cents = new_price

    publish(OrderChangeEvent(order_id=order_id, change="lines_changed", new_status=OrderStatus.DRAFT.value))
    return line


def remove_line(order_id: int, line_id: int) -> dict:
    with unit_of_work():
        order = _get_draft_order(order_id)
        line = _get_order_line(order, line_id)
        removed = line.to_dict()
        order.lines.remove(line)

    publish(OrderChangeEvent(order_id=order_id, change="lines_changed", new_status=OrderStatus.DRAFT.value))
    return {"removed_line": removed, "order": order.to_dict()}


def delete_order(order_id: int) -> None:
    """Only DRAFT orders can be deleted; anything later has ledger history."""
    with unit_of_work():
        order = _get_draft_order(order_id)
        db.session.delete(order)

    current_app.logger.info("Deleted draft order %s", order_id)
    publish(OrderChangeEvent(order_id=order_id, change="deleted", previous_status=OrderStatus.DRAFT.value))
