"""
Order lifecycle tests: transition legality, ledger rows, availability conflicts.
"""

import pytest

from conftest import jan
from rental.errors import AvailabilityConflictError, InvalidTransitionError, NotFoundError, ValidationError
from rental.models import Order, StockMovement
from rental.services import notifications, order_status_service
from rental.services.order_status_service import ALLOWED_TRANSITIONS


def _movements(db_session, order_id):
    return [
        (m.reason, m.delta)
        for m in db_session.query(StockMovement).filter_by(order_id=order_id).order_by(StockMovement.id)
    ]


class TestTransitionLegality:
    def test_draft_cannot_jump_to_checked_out(self, db_session, make_item, make_order):
        chair = make_item("Chair")
        order = make_order([(chair, 1)], start=jan(1), end=jan(2))

        with pytest.raises(InvalidTransitionError) as exc:
            order_status_service.checkout_order(order.id, "ops")
        assert exc.value.detail["valid_transitions"] == ["RESERVED", "CANCELLED"]

    @pytest.mark.parametrize("terminal", ["RETURNED", "CANCELLED"])
    def test_terminal_states_have_no_exits(self, db_session, make_item, make_order, terminal):
        chair = make_item("Chair")
        order = make_order([(chair, 1)], start=jan(1), end=jan(2), status=terminal)

        for target in ALLOWED_TRANSITIONS:
            with pytest.raises(InvalidTransitionError):
                order_status_service.transition(order.id, target, "ops")

    def test_unknown_status_and_missing_actor(self, db_session, make_item, make_order):
        chair = make_item("Chair")
        order = make_order([(chair, 1)], start=jan(1), end=jan(2))

        with pytest.raises(ValidationError):
            order_status_service.transition(order.id, "SHIPPED", "ops")
        with pytest.raises(ValidationError):
            order_status_service.transition(order.id, "RESERVED", "  ")
        with pytest.raises(NotFoundError):
            order_status_service.transition(9999, "RESERVED", "ops")

    def test_empty_order_cannot_be_reserved(self, db_session, make_order):
        order = make_order([], start=jan(1), end=jan(2))
        with pytest.raises(ValidationError):
            order_status_service.reserve_order(order.id, "ops")


class TestLedgerRows:
    def test_full_lifecycle_writes_expected_movements(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        crew = make_item("Setup crew", kind="SERVICE")
        order = make_order([(chair, 4), (crew, 1)], start=jan(1), end=jan(3))

        reserved = order_status_service.reserve_order(order.id, "ops")
        assert reserved.previous_status == "DRAFT"
        assert reserved.new_status == "RESERVED"
        assert len(reserved.movements) == 1

        order_status_service.checkout_order(order.id, "ops")
        order_status_service.return_order(order.id, "ops", notes="All chairs back")

        assert _movements(db_session, order.id) == [("reserve", -4), ("checkout", -4), ("return", 4)]
        db_session.expire_all()
        assert db_session.get(Order, order.id).status == "RETURNED"
        # Physical count is untouched by order transitions
        assert chair.quantity_on_hand == 10

    def test_cancel_from_reserved_releases(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        order = make_order([(chair, 4)], start=jan(1), end=jan(3))

        order_status_service.reserve_order(order.id, "ops")
        order_status_service.cancel_order(order.id, "ops")

        assert _movements(db_session, order.id) == [("reserve", -4), ("release", 4)]

    def test_cancel_from_draft_writes_nothing(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        order = make_order([(chair, 4)], start=jan(1), end=jan(3))

        result = order_status_service.cancel_order(order.id, "ops")
        assert result.movements == []
        assert _movements(db_session, order.id) == []

    def test_result_serializes(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        order = make_order([(chair, 2)], start=jan(1), end=jan(3))

        data = order_status_service.reserve_order(order.id, "ops").to_dict()
        assert data["order"]["status"] == "RESERVED"
        assert data["movements"][0]["reason"] == "reserve"
        assert data["actor"] == "ops"
        assert data["transitioned_at"].endswith("Z")


class TestAvailabilityConflicts:
    def test_reserve_conflict_cancel_retry(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        order_a = make_order([(chair, 8)], start=jan(1), end=jan(5))
        order_b = make_order([(chair, 5)], start=jan(3), end=jan(7))

        order_status_service.reserve_order(order_a.id, "ops")

        with pytest.raises(AvailabilityConflictError) as exc:
            order_status_service.reserve_order(order_b.id, "ops")
        conflict = exc.value.conflicts[0]
        assert conflict["item_id"] == chair.id
        assert conflict["requested"] == 5
        assert conflict["available"] == 2
        assert conflict["shortfall"] == 3
        assert conflict["conflicting_orders"][0]["order_id"] == order_a.id

        # Failed transition leaves B untouched
        db_session.expire_all()
        assert db_session.get(Order, order_b.id).status == "DRAFT"
        assert _movements(db_session, order_b.id) == []

        order_status_service.cancel_order(order_a.id, "ops")
        result = order_status_service.reserve_order(order_b.id, "ops")
        assert result.new_status == "RESERVED"

    def test_checkout_rechecks_availability(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        order = make_order([(chair, 6)], start=jan(1), end=jan(5), status="RESERVED")
        # Over-committed by a later direct write
        make_order([(chair, 6)], start=jan(2), end=jan(4), status="CHECKED_OUT")

        with pytest.raises(AvailabilityConflictError):
            order_status_service.checkout_order(order.id, "ops")

    def test_service_lines_are_not_checked(self, db_session, make_item, make_order):
        crew = make_item("Setup crew", kind="SERVICE")
        order = make_order([(crew, 50)], start=jan(1), end=jan(5))

        result = order_status_service.reserve_order(order.id, "ops")
        assert result.movements == []


class TestBulkAndQueries:
    def test_bulk_collects_failures(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        ok = make_order([(chair, 1)], start=jan(1), end=jan(2))
        done = make_order([(chair, 1)], start=jan(1), end=jan(2), status="RETURNED")

        result = order_status_service.bulk_transition([ok.id, done.id, 9999], "CANCELLED", "ops")

        assert result["success_count"] == 1
        assert result["failure_count"] == 2
        kinds = {f["order_id"]: f["error"]["kind"] for f in result["failed"]}
        assert kinds == {done.id: "InvalidTransition", 9999: "NotFound"}

    def test_valid_transitions_and_dry_run(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=2)
        order = make_order([(chair, 3)], start=jan(1), end=jan(2))

        assert order_status_service.get_valid_transitions(order.id)["valid_transitions"] == ["RESERVED", "CANCELLED"]

        dry_run = order_status_service.validate_order_for_transition(order.id, "RESERVED")
        assert not dry_run["is_valid"]
        assert dry_run["conflicts"][0]["shortfall"] == 1

        illegal = order_status_service.validate_order_for_transition(order.id, "RETURNED")
        assert not illegal["is_valid"]
        assert "Invalid transition" in illegal["errors"][0]

    def test_status_history_from_ledger(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        order = make_order([(chair, 2)], start=jan(1), end=jan(2))
        order_status_service.reserve_order(order.id, "alice")
        order_status_service.checkout_order(order.id, "bob")

        history = order_status_service.get_status_history(order.id)["history"]
        assert [h["status"] for h in history] == ["DRAFT", "RESERVED", "CHECKED_OUT"]
        assert [h["actor"] for h in history] == [None, "alice", "bob"]

    def test_listeners_notified_after_commit(self, db_session, make_item, make_order):
        chair = make_item("Chair", qty=10)
        order = make_order([(chair, 2)], start=jan(1), end=jan(2))
        events = []
        notifications.subscribe(events.append)

        @notifications.subscribe
        def broken(event):
            raise RuntimeError("cache down")

        order_status_service.reserve_order(order.id, "ops")

        assert [(e.order_id, e.previous_status, e.new_status) for e in events] == [(order.id, "DRAFT", "RESERVED")]
        db_session.expire_all()
        assert db_session.get(Order, order.id).status == "RESERVED"
