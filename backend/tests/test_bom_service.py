"""
BOM service tests: edge validation, cycle rejection, composite availability.
"""

import pytest

from conftest import add_edge
from rental.errors import (
    CycleDetectedError,
    NotAtomicError,
    NotCompositeError,
    NotFoundError,
    SelfReferenceError,
    ValidationError,
)
from rental.models import ItemComponent
from rental.services import bom_service


def _edges(db_session):
    return sorted(
        (e.parent_id, e.child_id, e.quantity) for e in db_session.query(ItemComponent).all()
    )


class TestAddComponent:
    def test_creates_then_requantifies_edge(self, db_session, make_item):
        kit = make_item("Tent kit", kind="COMPOSITE")
        pole = make_item("Pole", qty=40)

        first = bom_service.add_component(kit.id, pole.id, 4)
        assert first["created"] is True
        assert first["component"]["quantity"] == 4

        second = bom_service.add_component(kit.id, pole.id, 6)
        assert second["created"] is False
        assert _edges(db_session) == [(kit.id, pole.id, 6)]

    def test_self_reference_rejected(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        with pytest.raises(SelfReferenceError):
            bom_service.add_component(kit.id, kit.id, 1)

    def test_parent_must_be_composite(self, db_session, make_item):
        chair = make_item("Chair")
        cushion = make_item("Cushion")
        with pytest.raises(NotCompositeError):
            bom_service.add_component(chair.id, cushion.id, 1)
        assert _edges(db_session) == []

    def test_child_must_be_atomic(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        other_kit = make_item("Other kit", kind="COMPOSITE")
        setup = make_item("Setup crew", kind="SERVICE")
        with pytest.raises(NotAtomicError):
            bom_service.add_component(kit.id, other_kit.id, 1)
        with pytest.raises(NotAtomicError):
            bom_service.add_component(kit.id, setup.id, 1)

    def test_quantity_must_be_positive(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        pole = make_item("Pole")
        for bad in (0, -2, "3", None):
            with pytest.raises(ValidationError):
                bom_service.add_component(kit.id, pole.id, bad)

    def test_missing_items(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        with pytest.raises(NotFoundError):
            bom_service.add_component(kit.id, 9999, 1)
        with pytest.raises(NotFoundError):
            bom_service.add_component(9999, kit.id, 1)

    def test_cycle_rejected_and_graph_unchanged(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        pole = make_item("Pole")
        # Legacy bad row: an atomic item pointing back at the kit
        add_edge(pole, kit, 1)
        before = _edges(db_session)

        with pytest.raises(CycleDetectedError) as exc:
            bom_service.add_component(kit.id, pole.id, 2)

        assert exc.value.path == [kit.id, pole.id, kit.id]
        assert exc.value.to_dict()["kind"] == "CycleDetected"
        assert _edges(db_session) == before


class TestRemoveAndUpdate:
    def test_remove_component(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        pole = make_item("Pole")
        bom_service.add_component(kit.id, pole.id, 2)

        result = bom_service.remove_component(kit.id, pole.id)
        assert result["removed_component"]["child_id"] == pole.id
        assert _edges(db_session) == []

        with pytest.raises(NotFoundError):
            bom_service.remove_component(kit.id, pole.id)

    def test_update_quantity(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        pole = make_item("Pole")
        bom_service.add_component(kit.id, pole.id, 2)

        bom_service.update_component_quantity(kit.id, pole.id, 5)
        assert _edges(db_session) == [(kit.id, pole.id, 5)]

        with pytest.raises(ValidationError):
            bom_service.update_component_quantity(kit.id, pole.id, 0)


class TestCycleDetection:
    def test_diamond_is_not_a_cycle(self, db_session, make_item):
        a = make_item("A", kind="COMPOSITE")
        b = make_item("B", kind="COMPOSITE")
        c = make_item("C", kind="COMPOSITE")
        d = make_item("D")
        add_edge(a, b, 1)
        add_edge(a, c, 1)
        add_edge(b, d, 1)
        add_edge(c, d, 1)

        assert bom_service.detect_cycle_in_bom(a.id).is_valid
        assert bom_service.detect_cycle(a.id, d.id).is_valid

    def test_existing_cycle_reported(self, db_session, make_item):
        a = make_item("A", kind="COMPOSITE")
        b = make_item("B", kind="COMPOSITE")
        add_edge(a, b, 1)
        add_edge(b, a, 1)

        check = bom_service.detect_cycle_in_bom(a.id)
        assert not check.is_valid
        assert check.cycle_path == [a.id, b.id, a.id]

        with pytest.raises(CycleDetectedError):
            bom_service.composite_availability(a.id)

    def test_new_edge_closing_loop(self, db_session, make_item):
        a = make_item("A", kind="COMPOSITE")
        b = make_item("B", kind="COMPOSITE")
        c = make_item("C", kind="COMPOSITE")
        add_edge(a, b, 1)
        add_edge(b, c, 1)

        check = bom_service.detect_cycle(c.id, a.id)
        assert not check.is_valid
        assert check.cycle_path == [a.id, b.id, c.id]


class TestCompositeAvailability:
    @pytest.mark.parametrize("pairs, expected", [
        ([(10, 4), (2, 1)], 2),
        ([(10, 3)], 3),
        ([(0, 1), (50, 1)], 0),
        ([], 0),
        ([(5, 0)], 0),
    ])
    def test_formula(self, pairs, expected):
        assert bom_service.calculate_composite_availability(pairs) == expected

    def test_from_store(self, db_session, make_item):
        kit = make_item("Tent kit", kind="COMPOSITE")
        pole = make_item("Pole", qty=10)
        canvas = make_item("Canvas", qty=2)
        bom_service.add_component(kit.id, pole.id, 4)
        bom_service.add_component(kit.id, canvas.id, 1)

        assert bom_service.composite_availability(kit.id) == 2

        stock = bom_service.calculate_composite_stock(kit.id)
        assert stock["available_quantity"] == 2
        assert stock["stock_status"] == "low_stock"
        assert stock["limiting_component"]["item_id"] == pole.id

    def test_empty_composite_is_zero(self, db_session, make_item):
        kit = make_item("Empty kit", kind="COMPOSITE")
        assert bom_service.composite_availability(kit.id) == 0

    def test_nested_composite(self, db_session, make_item):
        outer = make_item("Stage", kind="COMPOSITE")
        inner = make_item("Deck kit", kind="COMPOSITE")
        panel = make_item("Panel", qty=12)
        add_edge(outer, inner, 2)
        add_edge(inner, panel, 3)

        # inner: 12 // 3 = 4 ; outer: 4 // 2 = 2
        assert bom_service.composite_availability(outer.id) == 2


class TestStructure:
    def test_validate_and_tree(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        pole = make_item("Pole", qty=0)
        bom_service.add_component(kit.id, pole.id, 2)

        result = bom_service.validate_bom_structure(kit.id)
        assert result["is_valid"]
        assert any("out of stock" in w for w in result["warnings"])

        tree = bom_service.get_bom_tree(kit.id)
        assert tree["id"] == kit.id
        assert tree["children"][0]["id"] == pole.id
        assert tree["children"][0]["required_quantity"] == 2

    def test_empty_composite_warns(self, db_session, make_item):
        kit = make_item("Kit", kind="COMPOSITE")
        result = bom_service.validate_bom_structure(kit.id)
        assert result["is_valid"]
        assert result["warnings"] == ["Composite item has no components defined"]
