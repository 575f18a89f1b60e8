from __future__ import annotations

from enum import Enum

from sqlalchemy import event

from ..errors import StateConflictError
from ..extensions import db
from rental.time_utils import to_utc_z


class MovementReason(str, Enum):
    CHECKOUT = "checkout"
    RETURN = "return"
    RESERVE = "reserve"
    RELEASE = "release"
    ADJUSTMENT = "adjustment"
    REPAIR = "repair"
    LOSS = "loss"
    FOUND = "found"


ORDER_REASONS = (
    MovementReason.CHECKOUT,
    MovementReason.RETURN,
    MovementReason.RESERVE,
    MovementReason.RELEASE,
)

MANUAL_REASONS = (
    MovementReason.ADJUSTMENT,
    MovementReason.REPAIR,
    MovementReason.LOSS,
    MovementReason.FOUND,
)

REASON_DESCRIPTIONS = {
    MovementReason.CHECKOUT: "Item checked out to customer",
    MovementReason.RETURN: "Item returned from customer",
    MovementReason.RESERVE: "Item reserved for order",
    MovementReason.RELEASE: "Item reservation released",
    MovementReason.ADJUSTMENT: "Manual stock adjustment",
    MovementReason.REPAIR: "Item sent for repair or returned from repair",
    MovementReason.LOSS: "Item lost or damaged",
    MovementReason.FOUND: "Item found or recovered",
}


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    INVARIANTS:
    - Rows are never updated or deleted (enforced by the mapper hooks below).
    - delta is non-zero; its sign and order_id presence are constrained per
      reason (see services/ledger_service.py REASON_RULES).
    - The ledger is the audit trail, not the live availability source.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("delta <> 0", name="ck_stock_movements_delta_non_zero"),
        db.Index("ix_stock_movements_item_created", "item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(16), nullable=False, index=True)

    created_by = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    item = db.relationship("Item")

    @property
    def movement_type(self) -> str:
        if self.delta > 0:
            return "increase"
        if self.delta < 0:
            return "decrease"
        return "neutral"

    @property
    def is_order_related(self) -> bool:
        return self.reason in {r.value for r in ORDER_REASONS}

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} item_id={self.item_id} {self.reason} {self.delta:+d}>"

    def to_dict(self) -> dict:
        try:
            description = REASON_DESCRIPTIONS[MovementReason(self.reason)]
        except ValueError:
            description = "Unknown reason"
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "order_id": self.order_id,
            "delta": self.delta,
            "reason": self.reason,
            "reason_description": description,
            "movement_type": self.movement_type,
            "is_order_related": self.is_order_related,
            "created_by": self.created_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise StateConflictError(
        f"StockMovement {target.id} is immutable; record a compensating movement instead",
        detail={"movement_id": target.id},
    )


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise StateConflictError(
        f"StockMovement {target.id} cannot be deleted; the stock ledger is append-only",
        detail={"movement_id": target.id},
    )
