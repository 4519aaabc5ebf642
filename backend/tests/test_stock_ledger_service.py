"""
Stock ledger tests.

Verifies:
- Every stock change writes exactly one movement
- Stock never goes negative; rejected changes leave no rows behind
- Reversal, in-place update and deletion keep stock == sum of movements
- Reconciliation reports drift between Product.stock and the ledger
"""

import pytest

from stockledger.extensions import db
from stockledger.models import Product, StockMovement
from stockledger.services import stock_ledger_service as ledger
from stockledger.services.concurrency import run_in_transaction
from stockledger.services.stock_ledger_service import (
    InsufficientStockError,
    MovementNotFoundError,
    ProductNotFoundError,
)
from stockledger.validation import NotFoundError, ValidationError


def _record(*args, **kwargs):
    return run_in_transaction(lambda: ledger.record_movement(*args, **kwargs), operation="Test movement")


def _stock(product_id):
    return db.session.get(Product, product_id).stock


# =============================================================================
# RECORD MOVEMENT
# =============================================================================


class TestRecordMovement:
    def test_in_movement_increases_stock(self, make_product, user):
        product = make_product(stock=5)
        movement = _record(product.id, "in", 3, "adjustment", user.id, notes="Found in back room")

        assert _stock(product.id) == 8
        assert movement.type == "in"
        assert movement.quantity == 3
        assert movement.signed_quantity == 3
        assert movement.created_by == user.id

    def test_out_movement_decreases_stock(self, make_product, user):
        product = make_product(stock=5)
        _record(product.id, "out", 2, "adjustment", user.id, notes="Damaged")
        assert _stock(product.id) == 3
        assert ledger.current_stock(product.id) == 3

    def test_out_to_exactly_zero_is_allowed(self, make_product, user):
        product = make_product(stock=4)
        _record(product.id, "out", 4, "sale", user.id)
        assert _stock(product.id) == 0

    def test_insufficient_stock_is_rejected_without_rows(self, make_product, user):
        product = make_product(stock=5, name="Denim Jacket")
        before = db.session.query(StockMovement).count()

        with pytest.raises(InsufficientStockError) as exc_info:
            _record(product.id, "out", 6, "adjustment", user.id, notes="Too many")

        err = exc_info.value
        assert err.product_id == product.id
        assert err.product_name == "Denim Jacket"
        assert err.available == 5
        assert err.requested == 6
        assert "Available: 5, Requested: 6" in str(err)
        assert _stock(product.id) == 5
        assert db.session.query(StockMovement).count() == before

    def test_unknown_product(self, db_session, user):
        with pytest.raises(ProductNotFoundError) as exc_info:
            _record(9999, "in", 1, "adjustment", user.id)
        assert isinstance(exc_info.value, NotFoundError)
        assert ledger.product_exists(9999) is False

    @pytest.mark.parametrize(
        "movement_type,quantity,reason",
        [
            ("sideways", 1, "adjustment"),
            ("in", 0, "adjustment"),
            ("in", -3, "adjustment"),
            ("in", True, "adjustment"),
            ("in", 1.5, "adjustment"),
            ("in", 1, "gift"),
        ],
    )
    def test_invalid_input(self, make_product, user, movement_type, quantity, reason):
        product = make_product(stock=1)
        with pytest.raises(ValidationError):
            _record(product.id, movement_type, quantity, reason, user.id)
        assert _stock(product.id) == 1

    def test_source_tagging(self, make_product, user):
        product = make_product()
        movement = _record(product.id, "in", 2, "purchase", user.id, notes="Purchase #1",
                           source_type="purchase", source_id=1)
        assert movement.source_type == "purchase"
        assert movement.source_id == 1
        assert ledger.movements_for_source("purchase", 1)[0].id == movement.id


# =============================================================================
# REVERSE / UPDATE / DELETE
# =============================================================================


class TestReverseMovement:
    def test_reversal_records_opposite_movement(self, make_product, user):
        product = make_product(stock=10)
        original = _record(product.id, "out", 4, "adjustment", user.id, notes="Miscount")

        reversal = run_in_transaction(
            lambda: ledger.reverse_movement(original.id, user.id, note="recount"),
            operation="Test reversal",
        )

        assert reversal.type == "in"
        assert reversal.quantity == 4
        assert reversal.reason == "adjustment"
        assert reversal.notes == f"Reversal of movement #{original.id}: recount"
        assert db.session.get(StockMovement, original.id) is not None
        assert _stock(product.id) == 10

    def test_reversal_of_in_needs_stock(self, make_product, user):
        product = make_product(stock=0)
        received = _record(product.id, "in", 3, "adjustment", user.id, notes="Delivery")
        _record(product.id, "out", 2, "sale", user.id)

        with pytest.raises(InsufficientStockError):
            run_in_transaction(lambda: ledger.reverse_movement(received.id, user.id), operation="Test reversal")
        assert _stock(product.id) == 1


class TestUpdateMovement:
    def test_net_delta_applied(self, make_product, user):
        product = make_product(stock=5)
        movement = _record(product.id, "out", 3, "adjustment", user.id, notes="Shrinkage")
        assert _stock(product.id) == 2

        run_in_transaction(lambda: ledger.update_movement(movement.id, user.id, new_quantity=1), operation="t")
        assert _stock(product.id) == 4

        run_in_transaction(
            lambda: ledger.update_movement(movement.id, user.id, new_type="in", new_quantity=2, new_notes="Found"),
            operation="t",
        )
        assert _stock(product.id) == 7
        updated = db.session.get(StockMovement, movement.id)
        assert (updated.type, updated.quantity, updated.notes) == ("in", 2, "Found")

    def test_update_that_would_go_negative(self, make_product, user):
        product = make_product(stock=5)
        movement = _record(product.id, "in", 2, "adjustment", user.id, notes="Extra")

        with pytest.raises(InsufficientStockError) as exc_info:
            run_in_transaction(
                lambda: ledger.update_movement(movement.id, user.id, new_type="out", new_quantity=8),
                operation="t",
            )
        assert exc_info.value.available == 7
        assert _stock(product.id) == 7
        assert db.session.get(StockMovement, movement.id).type == "in"

    def test_unknown_movement(self, db_session, user):
        with pytest.raises(MovementNotFoundError):
            run_in_transaction(lambda: ledger.update_movement(424242, user.id, new_quantity=1), operation="t")


class TestDeleteMovement:
    def test_delete_reverts_and_removes(self, make_product, user):
        product = make_product(stock=5)
        movement = _record(product.id, "out", 2, "adjustment", user.id, notes="Damaged")

        run_in_transaction(lambda: ledger.delete_movement(movement.id, user.id), operation="t")

        assert _stock(product.id) == 5
        assert db.session.get(StockMovement, movement.id) is None

    def test_delete_in_movement_needs_stock(self, make_product, user):
        product = make_product(stock=0)
        movement = _record(product.id, "in", 3, "adjustment", user.id, notes="Delivery")
        _record(product.id, "out", 3, "sale", user.id)

        with pytest.raises(InsufficientStockError):
            run_in_transaction(lambda: ledger.delete_movement(movement.id, user.id), operation="t")
        assert db.session.get(StockMovement, movement.id) is not None


# =============================================================================
# RECONCILIATION AND QUERIES
# =============================================================================


class TestReconciliation:
    def test_consistent_after_mixed_operations(self, make_product, user):
        a = make_product(stock=5)
        b = make_product(stock=0)
        _record(a.id, "out", 2, "sale", user.id)
        _record(b.id, "in", 7, "purchase", user.id)
        m = _record(b.id, "out", 1, "adjustment", user.id, notes="Sample")
        run_in_transaction(lambda: ledger.update_movement(m.id, user.id, new_quantity=3), operation="t")

        assert ledger.verify_ledger() == []
        assert ledger.ledger_balance(a.id) == 3
        assert ledger.ledger_balance(b.id) == 4

    def test_detects_direct_stock_edit(self, make_product, db_session):
        product = make_product(stock=5)
        db_session.query(Product).filter_by(id=product.id).update({"stock": 9})
        db_session.commit()

        mismatches = ledger.verify_ledger()
        assert len(mismatches) == 1
        assert mismatches[0]["product_id"] == product.id
        assert mismatches[0]["stock"] == 9
        assert mismatches[0]["ledger_balance"] == 5
        assert mismatches[0]["difference"] == 4

    def test_product_with_no_movements_and_zero_stock_is_consistent(self, make_product):
        product = make_product(stock=0)
        assert ledger.verify_ledger(product.id) == []


class TestListMovements:
    def test_filters_and_newest_first(self, make_product, user):
        a = make_product(stock=10)
        b = make_product(stock=3)
        _record(a.id, "out", 1, "sale", user.id)
        _record(a.id, "out", 2, "sale", user.id)

        rows, total = ledger.list_movements(product_id=a.id)
        assert total == 3
        assert [m.quantity for m in rows] == [2, 1, 10]

        rows, total = ledger.list_movements(reason="sale")
        assert total == 2
        rows, total = ledger.list_movements(type="in")
        assert {m.product_id for m in rows} == {a.id, b.id}

    def test_pagination(self, make_product, user):
        product = make_product(stock=10)
        for _ in range(4):
            _record(product.id, "out", 1, "sale", user.id)

        rows, total = ledger.list_movements(product_id=product.id, page=2, per_page=2)
        assert total == 5
        assert len(rows) == 2

    def test_invalid_filter(self, db_session):
        with pytest.raises(ValidationError):
            ledger.list_movements(type="up")
