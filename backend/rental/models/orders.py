from __future__ import annotations

import math
from enum import Enum

from ..extensions import db
from rental.time_utils import to_utc_z


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    RESERVED = "RESERVED"
    CHECKED_OUT = "CHECKED_OUT"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


# Orders in these states hold stock against their effective window
BLOCKING_STATUSES = (OrderStatus.RESERVED.value, OrderStatus.CHECKED_OUT.value)

TERMINAL_STATUSES = (OrderStatus.RETURNED.value, OrderStatus.CANCELLED.value)


class Order(db.Model):
    """
    Rental order.

    TIME WINDOW (exactly one form is present):
    - simple:   start_date < return_due_date
    - extended: setup_start <= order_start < order_end <= cleanup_end
                (setup_start / cleanup_end optional buffers)

    The effective window (setup -> cleanup when present) is what blocks stock:
        effective_start = setup_start ?? order_start ?? start_date
        effective_end   = cleanup_end ?? order_end ?? return_due_date

    LIFECYCLE: see services/order_status_service.py. Lines are mutable only
    while DRAFT; RETURNED and CANCELLED are terminal.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_window", "status", "setup_start", "cleanup_end"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    # Staff directory is external; id only
    sales_person_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=OrderStatus.DRAFT.value, index=True)

    # Simple window
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    return_due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Extended window
    setup_start = db.Column(db.DateTime(timezone=True), nullable=True)
    order_start = db.Column(db.DateTime(timezone=True), nullable=True)
    order_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cleanup_end = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def has_extended_window(self) -> bool:
        return self.order_start is not None or self.order_end is not None

    @property
    def effective_start(self):
        return self.setup_start or self.order_start or self.start_date

    @property
    def effective_end(self):
        return self.cleanup_end or self.order_end or self.return_due_date

    @property
    def rental_start(self):
        return self.order_start if self.has_extended_window else self.start_date

    @property
    def rental_end(self):
        return self.order_end if self.has_extended_window else self.return_due_date

    @property
    def rental_days(self) -> int:
        if self.rental_start is None or self.rental_end is None:
            return 1
        seconds = (self.rental_end - self.rental_start).total_seconds()
        return max(1, math.ceil(seconds / 86400))

    @property
    def is_draft(self) -> bool:
        return self.status == OrderStatus.DRAFT.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} customer_id={self.customer_id}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.display_name if self.customer else None,
            "sales_person_id": self.sales_person_id,
            "status": self.status,
            "start_date": to_utc_z(self.start_date),
            "return_due_date": to_utc_z(self.return_due_date),
            "setup_start": to_utc_z(self.setup_start),
            "order_start": to_utc_z(self.order_start),
            "order_end": to_utc_z(self.order_end),
            "cleanup_end": to_utc_z(self.cleanup_end),
            "effective_start": to_utc_z(self.effective_start),
            "effective_end": to_utc_z(self.effective_end),
            "rental_days": self.rental_days,
            "notes": self.notes,
            "total_cents": self.total_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "item_id", name="uq_order_lines_order_item"),
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        db.CheckConstraint("price_per_day_cents >= 0", name="ck_order_lines_price_non_negative"),
        db.Index("ix_order_lines_item_order", "item_id", "order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # Items referenced by a line cannot be deleted
    item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_per_day_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="lines")
    item = db.relationship("Item")

    @property
    def line_total_cents(self) -> int:
        days = self.order.rental_days if self.order is not None else 1
        return self.quantity * self.price_per_day_cents * days

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "quantity": self.quantity,
            "price_per_day_cents": self.price_per_day_cents,
            "line_total_cents": self.line_total_cents,
        }
