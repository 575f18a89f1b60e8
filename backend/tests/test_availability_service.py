"""
Availability calculator tests: inclusive overlap on effective windows.
"""

import pytest

from conftest import add_edge, jan
from rental.errors import InvalidWindowError, NotFoundError, ValidationError
from rental.services import availability_service


def test_overlapping_reservation_reduces_availability(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    make_order([(chair, 7)], start=jan(10), end=jan(15), status="RESERVED")

    overlapping = availability_service.check_item_availability(chair.id, jan(14), jan(20))
    assert overlapping["base_quantity"] == 10
    assert overlapping["reserved_quantity"] == 7
    assert overlapping["available"] == 3

    disjoint = availability_service.check_item_availability(chair.id, jan(20), jan(25))
    assert disjoint["available"] == 10


def test_overlap_is_inclusive_at_boundaries(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    make_order([(chair, 4)], start=jan(10), end=jan(15), status="RESERVED")

    assert availability_service.check_item_availability(chair.id, jan(15), jan(18))["available"] == 6
    assert availability_service.check_item_availability(chair.id, jan(5), jan(10))["available"] == 6
    assert availability_service.check_item_availability(chair.id, jan(15, 1), jan(18))["available"] == 10


def test_only_blocking_statuses_count(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    for status in ("DRAFT", "RETURNED", "CANCELLED"):
        make_order([(chair, 5)], start=jan(10), end=jan(15), status=status)
    make_order([(chair, 2)], start=jan(10), end=jan(15), status="CHECKED_OUT")

    result = availability_service.check_item_availability(chair.id, jan(11), jan(12))
    assert result["reserved_quantity"] == 2
    assert result["available"] == 8


def test_extended_window_blocks_setup_and_cleanup(db_session, make_item, make_order):
    stage = make_item("Stage deck", qty=6)
    make_order(
        [(stage, 6)],
        status="RESERVED",
        setup_start=jan(8),
        order_start=jan(10),
        order_end=jan(12),
        cleanup_end=jan(14),
    )

    # Setup day is blocked even though the rental itself starts on the 10th
    assert availability_service.check_item_availability(stage.id, jan(8, 6), jan(9))["available"] == 0
    assert availability_service.check_item_availability(stage.id, jan(13, 12), jan(13, 18))["available"] == 0
    assert availability_service.check_item_availability(stage.id, jan(15), jan(16))["available"] == 6


def test_exclude_order(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    order = make_order([(chair, 7)], start=jan(10), end=jan(15), status="RESERVED")

    result = availability_service.check_item_availability(chair.id, jan(10), jan(15), exclude_order_id=order.id)
    assert result["available"] == 10


def test_available_never_negative(db_session, make_item, make_order):
    chair = make_item("Chair", qty=5)
    make_order([(chair, 4)], start=jan(10), end=jan(15), status="RESERVED")
    make_order([(chair, 4)], start=jan(11), end=jan(16), status="CHECKED_OUT")

    assert availability_service.check_item_availability(chair.id, jan(12), jan(13))["available"] == 0


def test_requery_is_idempotent(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    make_order([(chair, 3)], start=jan(10), end=jan(15), status="RESERVED")

    first = availability_service.check_item_availability(chair.id, "2026-01-11T00:00:00Z", "2026-01-12T00:00:00Z")
    second = availability_service.check_item_availability(chair.id, "2026-01-11T00:00:00Z", "2026-01-12T00:00:00Z")
    assert first == second


def test_composite_availability_uses_bom(db_session, make_item, make_order):
    kit = make_item("Tent kit", kind="COMPOSITE")
    pole = make_item("Pole", qty=12)
    add_edge(kit, pole, 4)
    make_order([(kit, 1)], start=jan(10), end=jan(15), status="RESERVED")

    result = availability_service.check_item_availability(kit.id, jan(11), jan(12))
    assert result["base_quantity"] == 3
    assert result["available"] == 2


@pytest.mark.parametrize("start, end", [
    (None, "2026-01-12"),
    ("2026-01-12", ""),
    ("   ", "2026-01-12"),
    ("2026-01-12", " \t"),
    ("not-a-date", "2026-01-12"),
    ("2026-01-12", "2026-01-10"),
])
def test_invalid_window(db_session, make_item, start, end):
    chair = make_item("Chair")
    with pytest.raises(InvalidWindowError):
        availability_service.check_item_availability(chair.id, start, end)


def test_unknown_and_service_items(db_session, make_item):
    crew = make_item("Setup crew", kind="SERVICE")
    with pytest.raises(NotFoundError):
        availability_service.check_item_availability(9999, jan(1), jan(2))
    with pytest.raises(ValidationError):
        availability_service.check_item_availability(crew.id, jan(1), jan(2))


def test_conflicts_name_blocking_orders(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    holder = make_order([(chair, 8)], start=jan(1), end=jan(5), status="RESERVED")

    report = availability_service.detect_availability_conflicts(
        [{"item_id": chair.id, "quantity": 5}], jan(3), jan(7)
    )
    assert report["has_conflicts"]
    conflict = report["conflicts"][0]
    assert conflict["requested"] == 5
    assert conflict["available"] == 2
    assert conflict["shortfall"] == 3
    assert conflict["conflicting_orders"][0]["order_id"] == holder.id
    assert conflict["conflicting_orders"][0]["customer_name"] == "Acme Events"


def test_check_multiple_reports_per_item(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    table = make_item("Table", qty=2)
    make_order([(table, 2)], start=jan(1), end=jan(5), status="RESERVED")

    result = availability_service.check_multiple_items_availability(
        [
            {"item_id": chair.id, "quantity": 4},
            {"item_id": table.id, "quantity": 1},
            {"item_id": 9999, "quantity": 1},
        ],
        jan(2),
        jan(3),
    )
    assert not result["all_available"]
    assert result["total_shortfall"] == 1
    chair_result, table_result, missing = result["results"]
    assert chair_result["is_available"]
    assert not table_result["is_available"]
    assert missing["error"]["kind"] == "NotFound"


@pytest.mark.parametrize("quantity", [None, 0, -5, 1.5, "3", True])
def test_check_multiple_rejects_bad_quantity_per_item(db_session, make_item, quantity):
    chair = make_item("Chair", qty=10)
    request = {"item_id": chair.id}
    if quantity is not None:
        request["quantity"] = quantity

    result = availability_service.check_multiple_items_availability(
        [request, {"item_id": chair.id, "quantity": 2}], jan(1), jan(2)
    )
    bad, good = result["results"]
    assert not result["all_available"]
    assert not bad["is_available"]
    assert bad["error"]["kind"] == "ValidationError"
    assert good["is_available"]
    assert result["total_shortfall"] == 0


@pytest.mark.parametrize("line", [{}, {"quantity": None}, {"quantity": 0}, {"quantity": -1}])
def test_conflict_detection_rejects_bad_quantity(db_session, make_item, line):
    chair = make_item("Chair", qty=10)
    with pytest.raises(ValidationError):
        availability_service.detect_availability_conflicts([{"item_id": chair.id, **line}], jan(1), jan(2))


def test_order_conflict_report(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    make_order([(chair, 8)], start=jan(1), end=jan(5), status="RESERVED")
    draft = make_order([(chair, 5)], start=jan(3), end=jan(7))

    report = availability_service.validate_order_availability(draft.id)
    assert not report["is_valid"]
    assert report["conflicts"][0]["shortfall"] == 3


def test_summary_classifies_items(db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    table = make_item("Table", qty=2)
    make_item("Lamp", qty=4)
    make_item("Crew", kind="SERVICE")
    make_order([(chair, 3), (table, 2)], start=jan(1), end=jan(5), status="RESERVED")

    summary = availability_service.get_availability_summary(jan(2), jan(3))
    assert summary["total_items"] == 3
    assert summary["available_items"] == 1
    assert summary["partially_available_items"] == 1
    assert summary["unavailable_items"] == 1
