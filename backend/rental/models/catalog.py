from __future__ import annotations

from enum import Enum

from ..extensions import db
from rental.time_utils import to_utc_z


class ItemKind(str, Enum):
    ATOMIC = "ATOMIC"
    COMPOSITE = "COMPOSITE"
    SERVICE = "SERVICE"


class Item(db.Model):
    """
    Rentable catalog item.

    KIND RULES:
    - ATOMIC:    physical unit tracked by count; quantity_on_hand is required and >= 0
    - COMPOSITE: bundle defined by ItemComponent edges; quantity_on_hand is always NULL
                 (availability is derived from components)
    - SERVICE:   time-billed labour; quantity_on_hand is always NULL, not stock-tracked

    quantity_on_hand is the PHYSICAL count. It changes only through manual
    ledger reasons (adjustment/repair/loss/found). Reservations and checkouts
    are reflected through overlapping-order demand, never through this field.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint(
            "quantity_on_hand IS NULL OR quantity_on_hand >= 0",
            name="ck_items_quantity_non_negative",
        ),
        db.CheckConstraint("price_per_day_cents >= 0", name="ck_items_price_non_negative"),
        db.Index("ix_items_kind_active", "kind", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(100), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    kind = db.Column(db.String(16), nullable=False, default=ItemKind.ATOMIC.value)

    quantity_on_hand = db.Column(db.Integer, nullable=True)

    # Authoritative storage in cents
    price_per_day_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_atomic(self) -> bool:
        return self.kind == ItemKind.ATOMIC.value

    @property
    def is_composite(self) -> bool:
        return self.kind == ItemKind.COMPOSITE.value

    @property
    def is_service(self) -> bool:
        return self.kind == ItemKind.SERVICE.value

    @property
    def is_stock_tracked(self) -> bool:
        return not self.is_service

    def validate(self) -> list[str]:
        errors = []
        if self.kind not in {k.value for k in ItemKind}:
            errors.append(f"kind must be one of: {', '.join(k.value for k in ItemKind)}")
        if self.is_atomic:
            if self.quantity_on_hand is None:
                errors.append("Atomic items require a quantity on hand")
            elif self.quantity_on_hand < 0:
                errors.append("Quantity on hand must be non-negative")
        elif self.quantity_on_hand is not None:
            errors.append(f"{self.kind.title()} items should not have a quantity on hand")
        if (self.price_per_day_cents or 0) < 0:
            errors.append("Price per day must be non-negative")
        return errors

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r} kind={self.kind}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "kind": self.kind,
            "quantity_on_hand": self.quantity_on_hand,
            "price_per_day_cents": self.price_per_day_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ItemComponent(db.Model):
    """
    BOM edge: parent (COMPOSITE) requires `quantity` units of child (ATOMIC).

    Edges are stored by id only. Traversals re-query children per node;
    no in-memory object graph of the BOM is ever built.
    """
    __tablename__ = "item_components"
    __table_args__ = (
        db.UniqueConstraint("parent_id", "child_id", name="uq_item_components_parent_child"),
        db.CheckConstraint("quantity > 0", name="ck_item_components_quantity_positive"),
        db.CheckConstraint("parent_id <> child_id", name="ck_item_components_no_self_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    child_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<ItemComponent {self.parent_id}->{self.child_id} x{self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "child_id": self.child_id,
            "quantity": self.quantity,
        }
