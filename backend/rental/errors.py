# Overview: Domain error taxonomy shared by services, routes and CLI.

"""
Rental Engine Error Taxonomy (authoritative)

Every domain failure is raised as a RentalError subclass carrying:
- kind:   stable machine-readable name callers switch on
- detail: structured diagnostics (cycle path, per-line shortfall, ...)

Routes map kind -> HTTP status via http_status. Store failures
(SQLAlchemyError) are NOT wrapped here; they propagate unchanged.
"""

from __future__ import annotations

from typing import Any


class RentalError(ValueError):
    """Base class for typed domain failures."""

    kind = "RentalError"
    http_status = 400

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "detail": self.detail,
        }


class NotFoundError(RentalError):
    """Item, order, line or BOM edge is missing."""

    kind = "NotFound"
    http_status = 404


class ValidationError(RentalError):
    """400-level input problem."""

    kind = "ValidationError"


class InvalidWindowError(ValidationError):
    """Missing, unparsable or reversed time-window bounds."""

    kind = "InvalidWindow"


class InvalidMovementError(ValidationError):
    """Stock movement violates its reason's sign/order/notes rules."""

    kind = "InvalidMovement"

    def __init__(self, errors: list[str]):
        super().__init__(
            f"Invalid stock movement: {', '.join(errors)}",
            detail={"errors": list(errors)},
        )
        self.errors = list(errors)


class SelfReferenceError(ValidationError):
    kind = "SelfReference"


class NotCompositeError(ValidationError):
    kind = "NotComposite"


class NotAtomicError(ValidationError):
    kind = "NotAtomic"


class InvalidTransitionError(RentalError):
    """Order status graph violation."""

    kind = "InvalidTransition"
    http_status = 409

    def __init__(self, order_id: int, from_status: str, to_status: str, allowed: list[str]):
        allowed_text = ", ".join(allowed) if allowed else "none (terminal state)"
        super().__init__(
            f"Invalid transition from {from_status} to {to_status} for order {order_id}. "
            f"Valid transitions: {allowed_text}",
            detail={
                "order_id": order_id,
                "from_status": from_status,
                "to_status": to_status,
                "valid_transitions": list(allowed),
            },
        )


class CycleDetectedError(RentalError):
    """Adding a BOM edge would make the component graph cyclic."""

    kind = "CycleDetected"
    http_status = 409

    def __init__(self, path: list[int]):
        super().__init__(
            f"Adding this component would create a cycle: {' -> '.join(str(p) for p in path)}",
            detail={"path": list(path)},
        )
        self.path = list(path)


class AvailabilityConflictError(RentalError):
    """One or more order lines exceed free quantity in the order's window."""

    kind = "AvailabilityConflict"
    http_status = 409

    def __init__(self, order_id: int | None, conflicts: list[dict]):
        summary = "; ".join(
            f"item {c['item_id']}: requested {c['requested']}, available {c['available']}"
            for c in conflicts
        )
        super().__init__(
            f"Availability validation failed: {summary}",
            detail={"order_id": order_id, "conflicts": conflicts},
        )
        self.conflicts = conflicts


class StateConflictError(RentalError):
    """Operation not permitted in the entity's current state."""

    kind = "StateConflict"
    http_status = 409
