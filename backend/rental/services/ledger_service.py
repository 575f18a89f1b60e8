# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy import case, func

from ..errors import InvalidMovementError, NotFoundError, RentalError, ValidationError
from ..extensions import db
from ..models import Item, MovementReason, MANUAL_REASONS, Order, REASON_DESCRIPTIONS, StockMovement
from ..time_utils import DateLike, to_utc_z
from ..validation import parse_window
from .concurrency import lock_for_update, unit_of_work
"""
Rental Stock Ledger Invariants (authoritative)

- Append-only: rows are inserted, never updated or deleted (mapper hooks enforce it).
- Every row passes its reason's rule before insertion (REASON_RULES).
- Order-driven rows are written inside the same DB transaction as the status
  change that implies them (see order_status_service.transition).
- quantity_on_hand is the physical count. Only the manual reasons
  (adjustment, repair, loss, found) change it, and only to a value >= 0.
  Reserve/checkout/return/release rows do NOT touch it: availability is
  computed live from overlapping orders.
- current_stock() compares declared on-hand with the ledger sum. It reports;
  it never corrects.
"""


@dataclass(frozen=True)
class ReasonRule:
    sign: Optional[int]  # -1 negative only, +1 positive only, None either
    requires_order: bool
    requires_notes: bool = False


REASON_RULES: dict[MovementReason, ReasonRule] = {
    MovementReason.CHECKOUT: ReasonRule(sign=-1, requires_order=True),
    MovementReason.RESERVE: ReasonRule(sign=-1, requires_order=True),
    MovementReason.RETURN: ReasonRule(sign=+1, requires_order=True),
    MovementReason.RELEASE: ReasonRule(sign=+1, requires_order=True),
    MovementReason.LOSS: ReasonRule(sign=-1, requires_order=False),
    MovementReason.FOUND: ReasonRule(sign=+1, requires_order=False),
    MovementReason.REPAIR: ReasonRule(sign=None, requires_order=False),
    MovementReason.ADJUSTMENT: ReasonRule(sign=None, requires_order=False, requires_notes=True),
}


def parse_reason(reason) -> MovementReason | None:
    if isinstance(reason, MovementReason):
        return reason
    try:
        return MovementReason(reason)
    except ValueError:
        return None


def validate_movement(
    *,
    item_id: int | None,
    order_id: int | None,
    delta,
    reason,
    created_by: str | None,
    notes: str | None = None,
) -> list[str]:
    """Return every rule the proposed movement breaks (empty when valid)."""
    errors = []

    if not item_id:
        errors.append("Item ID is required")

    if not isinstance(delta, int) or isinstance(delta, bool):
        errors.append("Delta must be an integer")
    elif delta == 0:
        errors.append("Delta cannot be zero")

    actor = "" if created_by is None else str(created_by).strip()
    if not actor:
        errors.append("Created by is required")
    elif len(actor) > 255:
        errors.append("Created by must be 255 characters or less")

    parsed = parse_reason(reason)
    if parsed is None:
        errors.append(f"Reason must be one of: {', '.join(r.value for r in MovementReason)}")
        return errors

    rule = REASON_RULES[parsed]
    if isinstance(delta, int) and delta != 0 and rule.sign is not None:
        if rule.sign < 0 and delta > 0:
            errors.append(f"{parsed.value} movements must have negative delta")
        if rule.sign > 0 and delta < 0:
            errors.append(f"{parsed.value} movements must have positive delta")

    if notes is not None and not isinstance(notes, str):
        errors.append("Notes must be a string")
    elif rule.requires_notes and (not notes or not notes.strip()):
        errors.append("Adjustment movements require notes explaining the reason")

    if rule.requires_order and order_id is None:
        errors.append(f"{parsed.value} movements must be associated with an order")
    if not rule.requires_order and order_id is not None:
        errors.append(f"{parsed.value} movements must not reference an order")

    return errors


def record_movement(
    item_id: int,
    order_id: int | None,
    delta: int,
    reason,
    created_by: str,
    notes: str | None = None,
) -> StockMovement:
    """
    Append one ledger row.

    - No updates/deletes of existing rows.
    - Flushes so the id is assigned; the caller owns the commit.
    """
    errors = validate_movement(
        item_id=item_id,
        order_id=order_id,
        delta=delta,
        reason=reason,
        created_by=created_by,
        notes=notes,
    )
    if errors:
        raise InvalidMovementError(errors)

    if db.session.get(Item, item_id) is None:
        raise NotFoundError("Item not found", detail={"item_id": item_id})
    if order_id is not None and db.session.get(Order, order_id) is None:
        raise NotFoundError("Order not found", detail={"order_id": order_id})

    movement = StockMovement(
        item_id=item_id,
        order_id=order_id,
        delta=delta,
        reason=parse_reason(reason).value,
        created_by=str(created_by).strip(),
        notes=notes,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


# ================================================================================
# RECONCILIATION
# ================================================================================

def current_stock(item_id: int) -> dict:
    """
    Declared on-hand vs. ledger-derived total for an ATOMIC item.

    A persistent non-zero difference is drift for an operator to investigate.
    """
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item not found", detail={"item_id": item_id})
    if not item.is_atomic:
        raise ValidationError(
            f"Stock reconciliation applies to atomic items only (item {item.id} is {item.kind})",
            detail={"item_id": item.id, "kind": item.kind},
        )

    movement_total = int(
        db.session.query(func.coalesce(func.sum(StockMovement.delta), 0))
        .filter(StockMovement.item_id == item.id)
        .scalar()
        or 0
    )
    quantity_on_hand = item.quantity_on_hand or 0
    difference = quantity_on_hand - movement_total
    return {
        "item_id": item.id,
        "item_name": item.name,
        "quantity_on_hand": quantity_on_hand,
        "movement_total": movement_total,
        "difference": difference,
        "is_consistent": difference == 0,
    }


def reconcile_all() -> list[dict]:
    items = db.session.query(Item).filter(Item.kind == "ATOMIC").order_by(Item.id).all()
    return [current_stock(item.id) for item in items]


# ================================================================================
# MANUAL ADJUSTMENTS (the only path that mutates quantity_on_hand)
# ================================================================================

def record_manual_adjustment(
    item_id: int,
    delta: int,
    reason,
    actor: str,
    notes: str | None = None,
) -> dict:
    """
    Change an ATOMIC item's physical count and record why.

    Raises:
        InvalidMovementError: reason is not manual, or breaks its rule
        NotFoundError: item missing
        ValidationError: non-atomic item, or the result would go negative
    """
    parsed = parse_reason(reason)
    if parsed not in MANUAL_REASONS:
        raise InvalidMovementError(
            [f"Invalid reason: {reason}. Must be one of: {', '.join(r.value for r in MANUAL_REASONS)}"]
        )

    with unit_of_work():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if item is None:
            raise NotFoundError("Item not found", detail={"item_id": item_id})
        if not item.is_atomic:
            raise ValidationError(
                f"Cannot manually adjust stock for {item.kind.lower()} items",
                detail={"item_id": item.id, "kind": item.kind},
            )

        previous_quantity = item.quantity_on_hand or 0
        new_quantity = previous_quantity + (delta if isinstance(delta, int) else 0)

        movement = record_movement(item.id, None, delta, parsed, actor, notes)

        if new_quantity < 0:
            raise ValidationError(
                "Adjustment would result in negative stock. "
                f"Current: {previous_quantity}, Adjustment: {delta}, Result: {new_quantity}",
                detail={"item_id": item.id, "current": previous_quantity, "delta": delta},
            )
        item.quantity_on_hand = new_quantity

    current_app.logger.info(
        "Stock %s on item %s by %s: %s -> %s",
        parsed.value, item_id, actor, previous_quantity, new_quantity,
    )
    return {
        "item": item.to_dict(),
        "movement": movement.to_dict(),
        "previous_quantity": previous_quantity,
        "new_quantity": new_quantity,
        "delta": delta,
    }


def _require_positive(quantity) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("Quantity must be greater than 0", detail={"quantity": quantity})
    return quantity


def send_for_repair(item_id: int, quantity: int, actor: str, notes: str | None = None) -> dict:
    qty = _require_positive(quantity)
    return record_manual_adjustment(item_id, -qty, MovementReason.REPAIR, actor, notes or "Item sent for repair")


def return_from_repair(item_id: int, quantity: int, actor: str, notes: str | None = None) -> dict:
    qty = _require_positive(quantity)
    return record_manual_adjustment(item_id, qty, MovementReason.REPAIR, actor, notes or "Item returned from repair")


def report_loss(item_id: int, quantity: int, actor: str, notes: str | None = None) -> dict:
    qty = _require_positive(quantity)
    return record_manual_adjustment(item_id, -qty, MovementReason.LOSS, actor, notes or "Item reported as lost")


def report_found(item_id: int, quantity: int, actor: str, notes: str | None = None) -> dict:
    qty = _require_positive(quantity)
    return record_manual_adjustment(
        item_id, qty, MovementReason.FOUND, actor, notes or "Item found and returned to inventory"
    )


def batch_adjustments(adjustments: list[dict], actor: str, global_notes: str | None = None) -> dict:
    """
    Apply several manual adjustments (e.g. after a physical count).

    Each adjustment commits or fails on its own; nothing is rolled back
    across entries.
    """
    if not adjustments:
        raise ValidationError("Adjustments array is required")

    successful, failed = [], []
    total_delta = 0

    for adj in adjustments:
        item_id = adj.get("item_id")
        delta = adj.get("delta")
        try:
            result = record_manual_adjustment(
                item_id,
                delta,
                adj.get("reason", MovementReason.ADJUSTMENT.value),
                actor,
                adj.get("notes") or global_notes or "Batch adjustment",
            )
        except RentalError as e:
            failed.append({"item_id": item_id, "delta": delta, "error": e.to_dict()})
            continue
        successful.append({"item_id": item_id, "result": result})
        total_delta += delta

    return {
        "successful": successful,
        "failed": failed,
        "total_delta": total_delta,
        "total_processed": len(adjustments),
        "success_count": len(successful),
        "failure_count": len(failed),
    }


# ================================================================================
# HISTORY & REPORTING
# ================================================================================

def get_item_movement_history(item_id: int, limit: int = 50, offset: int = 0) -> dict:
    """Newest-first movements, each with the ledger running total up to it."""
    if db.session.get(Item, item_id) is None:
        raise NotFoundError("Item not found", detail={"item_id": item_id})

    running = (
        db.session.query(
            StockMovement.id.label("id"),
            func.sum(StockMovement.delta)
            .over(order_by=(StockMovement.created_at.asc(), StockMovement.id.asc()))
            .label("running_total"),
        )
        .filter(StockMovement.item_id == item_id)
        .subquery()
    )
    rows = (
        db.session.query(StockMovement, running.c.running_total)
        .join(running, StockMovement.id == running.c.id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    total = (
        db.session.query(func.count(StockMovement.id))
        .filter(StockMovement.item_id == item_id)
        .scalar()
    )

    page = [{**movement.to_dict(), "running_total": int(running_total)} for movement, running_total in rows]
    has_more = total > offset + limit
    return {
        "movements": page,
        "count": len(page),
        "total_movements": total,
        "has_more": has_more,
        "pagination": {
            "limit": limit,
            "offset": offset,
            "next_offset": offset + limit if has_more else None,
        },
    }


def get_movements_for_order(order_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(order_id=order_id)
        .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        .all()
    )


def get_order_movement_history(order_id: int) -> dict:
    if db.session.get(Order, order_id) is None:
        raise NotFoundError("Order not found", detail={"order_id": order_id})

    by_item: dict[int, dict] = {}
    movements = get_movements_for_order(order_id)
    for movement in movements:
        entry = by_item.setdefault(movement.item_id, {
            "item_id": movement.item_id,
            "item_name": movement.item.name if movement.item else None,
            "movements": [],
            "total_delta": 0,
        })
        entry["movements"].append(movement.to_dict())
        entry["total_delta"] += movement.delta

    return {
        "order_id": order_id,
        "order_movements": list(by_item.values()),
        "total_movements": len(movements),
    }


def get_movement_statistics(window_start: DateLike, window_end: DateLike, item_id: int | None = None) -> dict:
    start, end = parse_window(window_start, window_end)

    q = db.session.query(
        StockMovement.reason,
        func.count(StockMovement.id).label("count"),
        func.coalesce(func.sum(StockMovement.delta), 0).label("total_delta"),
        func.coalesce(func.sum(case((StockMovement.delta > 0, StockMovement.delta), else_=0)), 0).label("increases"),
        func.coalesce(func.sum(case((StockMovement.delta < 0, StockMovement.delta), else_=0)), 0).label("decreases"),
    ).filter(
        StockMovement.created_at >= start,
        StockMovement.created_at <= end,
    )
    if item_id is not None:
        q = q.filter(StockMovement.item_id == item_id)

    rows = q.group_by(StockMovement.reason).order_by(func.count(StockMovement.id).desc()).all()

    statistics = []
    for row in rows:
        parsed = parse_reason(row.reason)
        statistics.append({
            "reason": row.reason,
            "reason_description": REASON_DESCRIPTIONS.get(parsed, row.reason),
            "count": int(row.count),
            "total_delta": int(row.total_delta),
            "total_increases": int(row.increases),
            "total_decreases": int(row.decreases),
        })

    return {
        "period": {"start": to_utc_z(start), "end": to_utc_z(end)},
        "item_id": item_id,
        "reason_statistics": statistics,
        "overall": {
            "total_count": sum(s["count"] for s in statistics),
            "net_delta": sum(s["total_delta"] for s in statistics),
            "total_increases": sum(s["total_increases"] for s in statistics),
            "total_decreases": sum(s["total_decreases"] for s in statistics),
        },
    }
