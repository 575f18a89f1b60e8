"""
CLI command tests.
"""

from conftest import add_edge, jan
from rental.services import ledger_service


def test_bom_validate_and_tree(runner, db_session, make_item):
    kit = make_item("Tent kit", kind="COMPOSITE")
    pole = make_item("Pole", qty=20)
    add_edge(kit, pole, 4)

    result = runner.invoke(args=["bom", "validate", str(kit.id)])
    assert result.exit_code == 0
    assert "PASS BOM is valid" in result.output

    result = runner.invoke(args=["bom", "tree", str(kit.id)])
    assert "Tent kit [COMPOSITE]" in result.output
    assert "Pole [ATOMIC] x4" in result.output


def test_bom_validate_unknown_item(runner, db_session):
    result = runner.invoke(args=["bom", "validate", "9999"])
    assert "FAIL Error: Item not found" in result.output


def test_stock_reconcile(runner, db_session, make_item):
    chair = make_item("Chair", qty=10)
    ledger_service.report_loss(chair.id, 1, "counter")

    result = runner.invoke(args=["stock", "reconcile", "--item-id", str(chair.id)])
    assert result.exit_code == 0
    assert "DRIFT" in result.output
    assert "1 with drift" in result.output


def test_orders_transition(runner, db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    order = make_order([(chair, 2)], start=jan(1), end=jan(2))

    result = runner.invoke(args=["orders", "transition", str(order.id), "reserved", "--actor", "ops"])
    assert result.exit_code == 0
    assert "DRAFT -> RESERVED" in result.output

    result = runner.invoke(args=["orders", "transition", str(order.id), "RETURNED", "--actor", "ops"])
    assert "FAIL Error: Invalid transition" in result.output


def test_orders_bulk_transition(runner, db_session, make_item, make_order):
    chair = make_item("Chair", qty=10)
    first = make_order([(chair, 1)], start=jan(1), end=jan(2))
    done = make_order([(chair, 1)], start=jan(1), end=jan(2), status="CANCELLED")

    result = runner.invoke(args=["orders", "bulk-transition", "CANCELLED", str(first.id), str(done.id), "--actor", "ops"])
    assert result.exit_code == 0
    assert "1 succeeded, 1 failed" in result.output


def test_system_init_db(runner, db_session):
    result = runner.invoke(args=["system", "init-db"])
    assert result.exit_code == 0
    assert "PASS Database ready." in result.output
