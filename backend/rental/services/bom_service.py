# Overview: Service-layer operations for bills of materials; keeps the component graph acyclic.

"""
Rental BOM Invariants (authoritative)

- A BOM edge is (parent COMPOSITE) -> (child ATOMIC, required quantity > 0).
- The directed graph of edges is acyclic. Every edge write runs the cycle
  check inside the same transaction, with the parent row locked.
- Traversals re-fetch each node's children by id from the store; no
  in-memory object graph of the BOM is ever constructed.
- Composite availability = min over components of floor(child / required);
  0 when there are no (valid) components. Nested composites recurse.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from flask import current_app

from ..errors import (
    CycleDetectedError,
    NotAtomicError,
    NotCompositeError,
    NotFoundError,
    SelfReferenceError,
    ValidationError,
)
from ..extensions import db
from ..models import Item, ItemComponent
from .concurrency import lock_for_update, unit_of_work


@dataclass(frozen=True)
class CycleCheck:
    is_valid: bool
    cycle_path: list[int] = field(default_factory=list)


def _require_positive_quantity(quantity) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("Quantity must be positive", detail={"quantity": quantity})


def _get_item(item_id: int, *, lock: bool = False, label: str = "Item") -> Item:
    query = db.session.query(Item).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise NotFoundError(f"{label} not found", detail={"item_id": item_id})
    return item


def _low_stock_threshold() -> int:
    return int(current_app.config.get("LOW_STOCK_THRESHOLD", 5))


def _max_depth() -> int:
    return int(current_app.config.get("BOM_MAX_DEPTH", 10))


def stock_status(quantity: int) -> str:
    if quantity <= 0:
        return "out_of_stock"
    if quantity <= _low_stock_threshold():
        return "low_stock"
    return "in_stock"


# ================================================================================
# EDGE MANAGEMENT
# ================================================================================

def get_item_components(parent_id: int) -> list[ItemComponent]:
    return (
        db.session.query(ItemComponent)
        .filter_by(parent_id=parent_id)
        .order_by(ItemComponent.id)
        .all()
    )


def _child_ids(item_id: int) -> list[int]:
    rows = (
        db.session.query(ItemComponent.child_id)
        .filter_by(parent_id=item_id)
        .order_by(ItemComponent.id)
        .all()
    )
    return [row.child_id for row in rows]


def add_component(parent_id: int, child_id: int, quantity: int) -> dict:
    """
    Add (or re-quantify) a BOM edge parent -> child.

    Raises:
        ValidationError: quantity <= 0 or missing ids
        SelfReferenceError: parent_id == child_id
        NotFoundError: parent or child missing
        NotCompositeError: parent is not COMPOSITE
        NotAtomicError: child is not ATOMIC
        CycleDetectedError: child can already reach parent (path attached)

    The graph is untouched on any failure.
    """
    if not parent_id or not child_id:
        raise ValidationError("Parent ID and Child ID are required")
    _require_positive_quantity(quantity)
    if parent_id == child_id:
        raise SelfReferenceError(
            "Item cannot be a component of itself",
            detail={"parent_id": parent_id, "child_id": child_id},
        )

    with unit_of_work():
        parent = _get_item(parent_id, lock=True, label="Parent item")
        if not parent.is_composite:
            raise NotCompositeError(
                "Parent item must be composite to have components",
                detail={"parent_id": parent_id, "kind": parent.kind},
            )

        child = _get_item(child_id, label="Child item")
        if not child.is_atomic:
            raise NotAtomicError(
                "Child item must be atomic (composite and service items cannot be components)",
                detail={"child_id": child_id, "kind": child.kind},
            )

        check = detect_cycle(parent_id, child_id)
        if not check.is_valid:
            raise CycleDetectedError([parent_id] + check.cycle_path)

        edge = db.session.query(ItemComponent).filter_by(parent_id=parent_id, child_id=child_id).first()
        created = edge is None
        if created:
            edge = ItemComponent(parent_id=parent_id, child_id=child_id, quantity=quantity)
            db.session.add(edge)
        else:
            edge.quantity = quantity
        db.session.flush()

    current_app.logger.info(
        "BOM edge %s -> %s %s with quantity %s",
        parent_id, child_id, "added" if created else "updated", quantity,
    )
    return {
        "component": edge.to_dict(),
        "parent": parent.to_dict(),
        "child": child.to_dict(),
        "created": created,
    }


def update_component_quantity(parent_id: int, child_id: int, quantity: int) -> dict:
    _require_positive_quantity(quantity)

    with unit_of_work():
        parent = _get_item(parent_id, lock=True, label="Parent item")
        if not parent.is_composite:
            raise NotCompositeError("Parent item must be composite", detail={"parent_id": parent_id})
        edge = db.session.query(ItemComponent).filter_by(parent_id=parent_id, child_id=child_id).first()
        if edge is None:
            raise NotFoundError(
                "Component relationship not found",
                detail={"parent_id": parent_id, "child_id": child_id},
            )
        edge.quantity = quantity

    return {"component": edge.to_dict(), "parent": parent.to_dict()}


def remove_component(parent_id: int, child_id: int) -> dict:
    if not parent_id or not child_id:
        raise ValidationError("Parent ID and Child ID are required")

    with unit_of_work():
        parent = _get_item(parent_id, lock=True, label="Parent item")
        if not parent.is_composite:
            raise NotCompositeError("Parent item must be composite", detail={"parent_id": parent_id})
        edge = db.session.query(ItemComponent).filter_by(parent_id=parent_id, child_id=child_id).first()
        if edge is None:
            raise NotFoundError(
                "Component relationship not found",
                detail={"parent_id": parent_id, "child_id": child_id},
            )
        removed = edge.to_dict()
        db.session.delete(edge)

    current_app.logger.info("BOM edge %s -> %s removed", parent_id, child_id)
    return {"removed_component": removed, "parent": parent.to_dict()}


# ================================================================================
# CYCLE DETECTION
# ================================================================================
# visited:         nodes fully explored; never need re-exploring
# recursion_stack: nodes on the current DFS path; meeting one again is a cycle
# Re-converging (diamond) BOMs hit `visited`, not the stack, so they pass.
# ================================================================================

def detect_cycle(parent_id: int, child_id: int) -> CycleCheck:
    """
    Would adding parent -> child close a cycle?

    Searches from child for a path back to parent. On failure cycle_path runs
    from child to the node that closes the loop.
    """
    path: list[int] = []
    has_cycle = _dfs_reaches(child_id, parent_id, set(), set(), path)
    return CycleCheck(is_valid=not has_cycle, cycle_path=path if has_cycle else [])


def _dfs_reaches(current_id, target_id, visited, recursion_stack, path) -> bool:
    if current_id == target_id:
        path.append(current_id)
        return True

    if current_id in recursion_stack:
        path.append(current_id)
        return True

    if current_id in visited:
        return False

    visited.add(current_id)
    recursion_stack.add(current_id)
    path.append(current_id)

    for next_id in _child_ids(current_id):
        if _dfs_reaches(next_id, target_id, visited, recursion_stack, path):
            return True

    recursion_stack.discard(current_id)
    path.pop()
    return False


def detect_cycle_in_bom(item_id: int) -> CycleCheck:
    """Report any cycle reachable from item_id (existing data, no new edge)."""
    path: list[int] = []
    has_cycle = _dfs_find_cycle(item_id, set(), set(), path)
    return CycleCheck(is_valid=not has_cycle, cycle_path=path if has_cycle else [])


def _dfs_find_cycle(current_id, visited, recursion_stack, path) -> bool:
    if current_id in recursion_stack:
        path.append(current_id)
        return True

    if current_id in visited:
        return False

    visited.add(current_id)
    recursion_stack.add(current_id)
    path.append(current_id)

    for next_id in _child_ids(current_id):
        if _dfs_find_cycle(next_id, visited, recursion_stack, path):
            return True

    recursion_stack.discard(current_id)
    path.pop()
    return False


# ================================================================================
# COMPOSITE AVAILABILITY
# ================================================================================

def calculate_composite_availability(components: Iterable[tuple[int, int]]) -> int:
    """
    Sets buildable from (available, required) pairs.

    Pairs with required <= 0 are skipped. Returns 0 for an empty list or when
    no pair contributed.
    """
    min_available = None
    for available, required in components:
        if required is None or required <= 0:
            continue
        possible_sets = max(0, available or 0) // required
        min_available = possible_sets if min_available is None else min(min_available, possible_sets)
    return 0 if min_available is None else max(0, min_available)


def item_base_quantity(item: Item) -> int:
    """Physical quantity an item can supply: on-hand for ATOMIC, derived for COMPOSITE."""
    if item.is_composite:
        return composite_availability(item.id)
    if item.is_atomic:
        return max(0, item.quantity_on_hand or 0)
    return 0


def composite_availability(item_id: int) -> int:
    return _composite_availability(item_id, (), 0)


def _composite_availability(item_id: int, trail: tuple, depth: int) -> int:
    if item_id in trail:
        raise CycleDetectedError(list(trail) + [item_id])
    if depth > _max_depth():
        raise ValidationError(
            "Maximum BOM depth exceeded - possible cycle detected",
            detail={"item_id": item_id, "max_depth": _max_depth()},
        )

    pairs = []
    for edge in get_item_components(item_id):
        child = db.session.get(Item, edge.child_id)
        if child is None:
            continue
        if child.is_composite:
            child_available = _composite_availability(child.id, trail + (item_id,), depth + 1)
        elif child.is_atomic:
            child_available = max(0, child.quantity_on_hand or 0)
        else:
            child_available = 0
        pairs.append((child_available, edge.quantity))

    return calculate_composite_availability(pairs)


def calculate_composite_stock(item_id: int) -> dict:
    """Available quantity with stock status and the component that limits it."""
    item = _get_item(item_id)

    if not item.is_composite:
        available = max(0, item.quantity_on_hand or 0)
        return {
            "item_id": item.id,
            "available_quantity": available,
            "stock_status": stock_status(available),
            "limiting_component": None,
        }

    min_available = None
    limiting = None
    for edge in get_item_components(item.id):
        if edge.quantity <= 0:
            continue
        child = db.session.get(Item, edge.child_id)
        if child is None:
            continue
        possible_sets = item_base_quantity(child) // edge.quantity
        if min_available is None or possible_sets < min_available:
            min_available = possible_sets
            limiting = {"item_id": child.id, "name": child.name, "required": edge.quantity}

    available = 0 if min_available is None else max(0, min_available)
    return {
        "item_id": item.id,
        "available_quantity": available,
        "stock_status": stock_status(available),
        "limiting_component": limiting,
    }


# ================================================================================
# STRUCTURE VALIDATION (read-only)
# ================================================================================

def validate_bom_structure(item_id: int) -> dict:
    """
    Inspect an item's BOM before it is offered for rent.

    Never mutates state. Errors make the BOM unusable; warnings are advisory.
    """
    item = _get_item(item_id)
    edges = get_item_components(item.id)
    threshold = _low_stock_threshold()

    errors: list[str] = []
    warnings: list[str] = []
    components = []

    if item.is_composite and not edges:
        warnings.append("Composite item has no components defined")
    if not item.is_composite and edges:
        errors.append(f"{item.kind.title()} item should not have components")

    for edge in edges:
        child = db.session.get(Item, edge.child_id)
        if child is None:
            errors.append(f"Component {edge.child_id} does not exist")
            continue

        components.append({**edge.to_dict(), "child_name": child.name, "child_kind": child.kind})

        if edge.quantity <= 0:
            errors.append(f"Component {child.name} has invalid quantity: {edge.quantity}")
        if not child.is_atomic:
            errors.append(f"Component {child.name} must be atomic, found {child.kind}")
            continue

        available = max(0, child.quantity_on_hand or 0)
        if available == 0:
            warnings.append(f"Component {child.name} is out of stock")
        elif available <= threshold:
            warnings.append(f"Component {child.name} has low stock: {available}")

    if edges:
        check = detect_cycle_in_bom(item.id)
        if not check.is_valid:
            errors.append(f"BOM contains cycle: {' -> '.join(str(p) for p in check.cycle_path)}")

    return {
        "is_valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "item": item.to_dict(),
        "components": components,
    }


def get_bom_tree(item_id: int, max_depth: int | None = None) -> dict:
    if max_depth is None:
        max_depth = _max_depth()
    tree = _bom_node(item_id, 0, max_depth)
    if tree is None:
        raise NotFoundError("Item not found", detail={"item_id": item_id})
    return tree


def _bom_node(item_id: int, depth: int, max_depth: int) -> dict | None:
    if depth > max_depth:
        raise ValidationError(
            "Maximum BOM depth exceeded - possible cycle detected",
            detail={"item_id": item_id, "max_depth": max_depth},
        )

    item = db.session.get(Item, item_id)
    if item is None:
        return None

    node = {**item.to_dict(), "depth": depth, "children": []}
    for edge in get_item_components(item.id):
        child = _bom_node(edge.child_id, depth + 1, max_depth)
        if child is not None:
            child["required_quantity"] = edge.quantity
            node["children"].append(child)
    return node
