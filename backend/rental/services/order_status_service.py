# Overview: Service-layer operations for the order lifecycle; encapsulates business logic and database work.

"""
Rental Order Lifecycle Service

================================================================================
PURPOSE: Move orders through their lifecycle with stock held consistently
================================================================================

STATE MACHINE:
    DRAFT -> RESERVED -> CHECKED_OUT -> RETURNED
    DRAFT -> CANCELLED
    RESERVED -> CANCELLED

    DRAFT:       Editable, holds no stock
    RESERVED:    Holds stock over its effective window
    CHECKED_OUT: Items are with the customer, still holds stock
    RETURNED:    Terminal
    CANCELLED:   Terminal

RULES (NON-NEGOTIABLE):
1. Only the edges above are legal; terminal states have no outgoing edges
2. Entering RESERVED or CHECKED_OUT re-checks availability for every
   stock-tracked line over the effective window, excluding the order itself
3. Each transition writes one ledger row per stock-tracked line:
       DRAFT -> RESERVED        reserve  (-qty)
       RESERVED -> CHECKED_OUT  checkout (-qty)
       CHECKED_OUT -> RETURNED  return   (+qty)
       RESERVED -> CANCELLED    release  (+qty)
       DRAFT -> CANCELLED       (nothing)
4. Status change and ledger rows commit together or not at all
5. SERVICE lines are never checked for availability and never get ledger rows

================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app

from ..errors import (
    AvailabilityConflictError,
    InvalidTransitionError,
    NotFoundError,
    RentalError,
    ValidationError,
)
from ..extensions import db
from ..models import BLOCKING_STATUSES, Item, MovementReason, Order, OrderStatus, StockMovement
from ..time_utils import to_utc_z, utcnow
from .availability_service import detect_availability_conflicts
from .concurrency import lock_for_update, lock_rows, unit_of_work
from .ledger_service import get_movements_for_order, record_movement
from .notifications import OrderChangeEvent, publish


ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    OrderStatus.DRAFT.value: (OrderStatus.RESERVED.value, OrderStatus.CANCELLED.value),
    OrderStatus.RESERVED.value: (OrderStatus.CHECKED_OUT.value, OrderStatus.CANCELLED.value),
    OrderStatus.CHECKED_OUT.value: (OrderStatus.RETURNED.value,),
    OrderStatus.RETURNED.value: (),
    OrderStatus.CANCELLED.value: (),
}

# (from, to) -> (reason, sign applied to line quantity)
TRANSITION_MOVEMENTS: dict[tuple[str, str], tuple[MovementReason, int]] = {
    (OrderStatus.DRAFT.value, OrderStatus.RESERVED.value): (MovementReason.RESERVE, -1),
    (OrderStatus.RESERVED.value, OrderStatus.CHECKED_OUT.value): (MovementReason.CHECKOUT, -1),
    (OrderStatus.CHECKED_OUT.value, OrderStatus.RETURNED.value): (MovementReason.RETURN, +1),
    (OrderStatus.RESERVED.value, OrderStatus.CANCELLED.value): (MovementReason.RELEASE, +1),
}

# Ledger reason -> status the order entered when the row was written
REASON_STATUS = {
    MovementReason.RESERVE.value: OrderStatus.RESERVED.value,
    MovementReason.CHECKOUT.value: OrderStatus.CHECKED_OUT.value,
    MovementReason.RETURN.value: OrderStatus.RETURNED.value,
    MovementReason.RELEASE.value: OrderStatus.CANCELLED.value,
}


@dataclass
class TransitionResult:
    order: Order
    movements: list[StockMovement]
    previous_status: str
    new_status: str
    actor: str
    transitioned_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "movements": [m.to_dict() for m in self.movements],
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "actor": self.actor,
            "transitioned_at": to_utc_z(self.transitioned_at),
        }


def parse_status(status) -> str:
    """Normalize a status (enum or string, any case) to its stored value."""
    if isinstance(status, OrderStatus):
        return status.value
    try:
        return OrderStatus(str(status).strip().upper()).value
    except ValueError:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(s.value for s in OrderStatus)}",
            detail={"status": status},
        )


def _require_actor(actor: Optional[str]) -> str:
    if not actor or not str(actor).strip():
        raise ValidationError("Actor is required")
    return str(actor).strip()


def _tracked_lines(order: Order) -> list:
    return [line for line in order.lines if line.item is not None and line.item.is_stock_tracked]


def _check_transition_allowed(order: Order, target: str) -> None:
    allowed = ALLOWED_TRANSITIONS.get(order.status, ())
    if target not in allowed:
        raise InvalidTransitionError(order.id, order.status, target, list(allowed))


def _check_availability(order: Order) -> None:
    if not order.lines:
        raise ValidationError(
            f"Order {order.id} has no line items",
            detail={"order_id": order.id},
        )

    tracked = _tracked_lines(order)
    if not tracked:
        return

    result = detect_availability_conflicts(tracked, order.effective_start, order.effective_end, order.id)
    if result["has_conflicts"]:
        current_app.logger.warning(
            "Availability conflict on order %s: %s short line(s)",
            order.id, result["conflict_count"],
        )
        raise AvailabilityConflictError(order.id, result["conflicts"])


def transition(order_id: int, new_status, actor: str, notes: str | None = None) -> TransitionResult:
    """
    Move an order to a new status.

    Locks the order and every line's item row (ascending id) before the
    availability check, then writes status and ledger rows in one commit.

    Raises:
        ValidationError: unknown status, missing actor, order without lines
        NotFoundError: order missing
        InvalidTransitionError: edge not in ALLOWED_TRANSITIONS
        AvailabilityConflictError: a line exceeds free quantity
    """
    target = parse_status(new_status)
    actor = _require_actor(actor)

    with unit_of_work():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError("Order not found", detail={"order_id": order_id})

        previous_status = order.status
        _check_transition_allowed(order, target)

        lock_rows(Item, [line.item_id for line in order.lines])

        if target in BLOCKING_STATUSES:
            _check_availability(order)

        movements = []
        movement_rule = TRANSITION_MOVEMENTS.get((previous_status, target))
        if movement_rule is not None:
            reason, sign = movement_rule
            for line in _tracked_lines(order):
                movements.append(
                    record_movement(line.item_id, order.id, sign * line.quantity, reason, actor, notes)
                )

        order.status = target

    current_app.logger.info(
        "Order %s %s -> %s by %s (%s movement(s))",
        order_id, previous_status, target, actor, len(movements),
    )
    publish(OrderChangeEvent(
        order_id=order_id,
        change="status_changed",
        previous_status=previous_status,
        new_status=target,
    ))

    return TransitionResult(
        order=order,
        movements=movements,
        previous_status=previous_status,
        new_status=target,
        actor=actor,
    )


def reserve_order(order_id: int, actor: str, notes: str | None = None) -> TransitionResult:
    return transition(order_id, OrderStatus.RESERVED, actor, notes)


def checkout_order(order_id: int, actor: str, notes: str | None = None) -> TransitionResult:
    return transition(order_id, OrderStatus.CHECKED_OUT, actor, notes)


def return_order(order_id: int, actor: str, notes: str | None = None) -> TransitionResult:
    return transition(order_id, OrderStatus.RETURNED, actor, notes)


def cancel_order(order_id: int, actor: str, notes: str | None = None) -> TransitionResult:
    return transition(order_id, OrderStatus.CANCELLED, actor, notes)


def bulk_transition(order_ids: Iterable[int], new_status, actor: str, notes: str | None = None) -> dict:
    """
    Apply the same transition to several orders independently.

    A domain failure on one order is recorded and the rest continue; orders
    already transitioned stay transitioned.
    """
    order_ids = list(order_ids)
    if not order_ids:
        raise ValidationError("order_ids must be a non-empty list")

    successful, failed = [], []
    for order_id in order_ids:
        try:
            result = transition(order_id, new_status, actor, notes)
        except RentalError as e:
            failed.append({"order_id": order_id, "error": e.to_dict()})
            continue
        successful.append({
            "order_id": order_id,
            "previous_status": result.previous_status,
            "new_status": result.new_status,
            "movement_count": len(result.movements),
        })

    return {
        "successful": successful,
        "failed": failed,
        "total": len(order_ids),
        "success_count": len(successful),
        "failure_count": len(failed),
    }


def get_valid_transitions(order_id: int) -> dict:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", detail={"order_id": order_id})
    allowed = ALLOWED_TRANSITIONS.get(order.status, ())
    return {
        "order_id": order.id,
        "current_status": order.status,
        "valid_transitions": list(allowed),
        "is_terminal": not allowed,
    }


def validate_order_for_transition(order_id: int, new_status) -> dict:
    """Dry run of transition(): reports what would fail without writing anything."""
    errors, conflicts = [], []
    current_status = None

    try:
        target = parse_status(new_status)
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found", detail={"order_id": order_id})
        current_status = order.status
        _check_transition_allowed(order, target)
        if target in BLOCKING_STATUSES:
            _check_availability(order)
    except AvailabilityConflictError as e:
        errors.append(e.message)
        conflicts = e.conflicts
    except RentalError as e:
        errors.append(e.message)

    return {
        "order_id": order_id,
        "current_status": current_status,
        "target_status": new_status.value if isinstance(new_status, OrderStatus) else new_status,
        "is_valid": not errors,
        "errors": errors,
        "conflicts": conflicts,
    }


def get_status_history(order_id: int) -> dict:
    """
    Status timeline reconstructed from the order's ledger rows.

    Transitions that write no rows (DRAFT -> CANCELLED, service-only orders)
    show up as a final entry stamped with the order's updated_at.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", detail={"order_id": order_id})

    history = [{
        "status": OrderStatus.DRAFT.value,
        "reason": None,
        "at": to_utc_z(order.created_at),
        "actor": None,
        "notes": None,
        "movement_count": 0,
    }]
    by_reason: dict[str, dict] = {}

    for movement in get_movements_for_order(order.id):
        entry = by_reason.get(movement.reason)
        if entry is None:
            entry = {
                "status": REASON_STATUS.get(movement.reason),
                "reason": movement.reason,
                "at": to_utc_z(movement.created_at),
                "actor": movement.created_by,
                "notes": movement.notes,
                "movement_count": 0,
            }
            by_reason[movement.reason] = entry
            history.append(entry)
        entry["movement_count"] += 1

    if history[-1]["status"] != order.status:
        history.append({
            "status": order.status,
            "reason": None,
            "at": to_utc_z(order.updated_at),
            "actor": None,
            "notes": None,
            "movement_count": 0,
        })

    return {"order_id": order.id, "current_status": order.status, "history": history}
