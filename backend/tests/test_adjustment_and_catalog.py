"""
Manual adjustment and catalog tests.

Verifies:
- Adjustments require notes and reason 'adjustment'
- Only free-standing adjustments can be edited or deleted
- Opening stock and direct stock edits go through the ledger
- SKU generation and product deletion rules
- Audit log entries for changes
"""

import logging
from decimal import Decimal

import pytest

from stockledger.extensions import db
from stockledger.models import AuditLog, Product, StockMovement
from stockledger.services import adjustment_service, catalog_service, purchase_service
from stockledger.services import stock_ledger_service as ledger
from stockledger.services.stock_ledger_service import InsufficientStockError
from stockledger.validation import ConflictError, NotFoundError, ValidationError


def _stock(product_id):
    return db.session.get(Product, product_id).stock


# =============================================================================
# MANUAL ADJUSTMENTS
# =============================================================================


class TestCreateAdjustment:
    def test_in_and_out(self, make_product, user):
        product = make_product(stock=5)
        adjustment_service.create_adjustment(
            product_id=product.id, type="in", quantity=3, notes="Recount", actor_id=user.id
        )
        movement = adjustment_service.create_adjustment(
            product_id=product.id, type="out", quantity=6, notes="Water damage", actor_id=user.id
        )

        assert _stock(product.id) == 2
        assert movement.reason == "adjustment"
        assert movement.source_type is None
        assert movement.created_by == user.id

    @pytest.mark.parametrize("notes", [None, "", "   "])
    def test_notes_required(self, make_product, user, notes):
        product = make_product(stock=5)
        with pytest.raises(ValidationError) as exc_info:
            adjustment_service.create_adjustment(
                product_id=product.id, type="out", quantity=1, notes=notes, actor_id=user.id
            )
        assert "notes" in exc_info.value.details
        assert _stock(product.id) == 5

    def test_notes_too_long(self, make_product, user):
        product = make_product(stock=5)
        with pytest.raises(ValidationError):
            adjustment_service.create_adjustment(
                product_id=product.id, type="out", quantity=1, notes="x" * 1001, actor_id=user.id
            )

    @pytest.mark.parametrize("reason", ["purchase", "sale", "gift"])
    def test_reason_must_be_adjustment(self, make_product, user, reason):
        product = make_product(stock=5)
        movements_before = db.session.query(StockMovement).count()
        with pytest.raises(ValidationError) as exc_info:
            adjustment_service.create_adjustment(
                product_id=product.id, type="in", quantity=1, notes="x", reason=reason, actor_id=user.id
            )
        assert "reason" in exc_info.value.details
        assert db.session.query(StockMovement).count() == movements_before

    def test_out_beyond_stock(self, make_product, user):
        product = make_product(stock=1)
        with pytest.raises(InsufficientStockError):
            adjustment_service.create_adjustment(
                product_id=product.id, type="out", quantity=2, notes="Lost", actor_id=user.id
            )
        assert _stock(product.id) == 1


class TestEditAdjustment:
    def test_update_applies_net_change(self, make_product, user):
        product = make_product(stock=10)
        movement = adjustment_service.create_adjustment(
            product_id=product.id, type="out", quantity=4, notes="Damaged", actor_id=user.id
        )

        updated = adjustment_service.update_adjustment(
            movement_id=movement.id, quantity=1, notes="Only one damaged", actor_id=user.id
        )

        assert _stock(product.id) == 9
        assert updated.notes == "Only one damaged"
        assert ledger.verify_ledger() == []

        entry = (
            db.session.query(AuditLog)
            .filter_by(model_type="StockMovement", model_id=movement.id, action="updated")
            .one()
        )
        assert entry.description == "Changed: notes, quantity, signed_quantity"

    def test_update_and_delete_are_logged(self, make_product, user, caplog):
        product = make_product(stock=10)
        movement = adjustment_service.create_adjustment(
            product_id=product.id, type="out", quantity=2, notes="Stained", actor_id=user.id
        )

        with caplog.at_level(logging.INFO, logger="stockledger.services.adjustment_service"):
            adjustment_service.update_adjustment(movement_id=movement.id, quantity=3, actor_id=user.id)
            adjustment_service.delete_adjustment(movement_id=movement.id, actor_id=user.id)

        messages = [r.getMessage() for r in caplog.records if r.name == "stockledger.services.adjustment_service"]
        assert f"Adjustment {movement.id} updated by user {user.id}: product={product.id} out 3" in messages
        assert f"Adjustment {movement.id} deleted by user {user.id}" in messages

    def test_update_rejects_other_reason(self, make_product, user):
        product = make_product(stock=10)
        movement = adjustment_service.create_adjustment(
            product_id=product.id, type="out", quantity=1, notes="x", actor_id=user.id
        )
        with pytest.raises(ValidationError):
            adjustment_service.update_adjustment(movement_id=movement.id, reason="sale", actor_id=user.id)

    def test_delete_reverts_and_is_audited(self, make_product, user):
        product = make_product(stock=10)
        movement = adjustment_service.create_adjustment(
            product_id=product.id, type="out", quantity=4, notes="Damaged", actor_id=user.id
        )

        adjustment_service.delete_adjustment(movement_id=movement.id, actor_id=user.id)

        assert _stock(product.id) == 10
        assert db.session.get(StockMovement, movement.id) is None
        entry = (
            db.session.query(AuditLog)
            .filter_by(model_type="StockMovement", model_id=movement.id, action="deleted")
            .one()
        )
        assert entry.user_id == user.id
        assert entry.old_values["quantity"] == 4

    def test_purchase_movements_are_not_editable(self, make_product, supplier, user):
        product = make_product()
        purchase = purchase_service.create_purchase(
            supplier_id=supplier.id,
            items=[{"product_id": product.id, "quantity": 3, "cost_price": Decimal("1.00")}],
            actor_id=user.id,
        )
        movement = ledger.movements_for_source("purchase", purchase.id)[0]

        with pytest.raises(ConflictError):
            adjustment_service.update_adjustment(movement_id=movement.id, quantity=1, actor_id=user.id)
        with pytest.raises(ConflictError):
            adjustment_service.delete_adjustment(movement_id=movement.id, actor_id=user.id)
        assert _stock(product.id) == 3

    def test_opening_stock_movement_is_not_editable(self, make_product, user):
        product = make_product(stock=4)
        opening = ledger.list_movements(product_id=product.id)[0][0]
        with pytest.raises(ConflictError):
            adjustment_service.delete_adjustment(movement_id=opening.id, actor_id=user.id)

    def test_unknown_movement(self, db_session, user):
        with pytest.raises(NotFoundError):
            adjustment_service.delete_adjustment(movement_id=999, actor_id=user.id)


# =============================================================================
# CATALOG
# =============================================================================


class TestProducts:
    def test_opening_stock_is_a_movement(self, make_product):
        product = make_product(stock=7)
        rows, total = ledger.list_movements(product_id=product.id)

        assert total == 1
        assert (rows[0].type, rows[0].reason, rows[0].quantity) == ("in", "adjustment", 7)
        assert rows[0].notes == "Initial stock on product creation"
        assert ledger.verify_ledger() == []

    def test_zero_opening_stock_has_no_movement(self, make_product):
        product = make_product(stock=0)
        assert ledger.list_movements(product_id=product.id)[1] == 0

    def test_sku_generated_sequentially(self, make_product, category, user):
        first = make_product()
        second = make_product()
        assert first.sku == "AG000001"
        assert second.sku == "AG000002"

        catalog_service.create_product(
            patch={"name": "Custom", "sku": "AG000041", "category_id": category.id,
                   "cost_price": Decimal("1.00"), "selling_price": Decimal("2.00")},
            actor_id=user.id,
        )
        assert make_product().sku == "AG000042"

    def test_duplicate_sku(self, make_product, category, user):
        existing = make_product()
        with pytest.raises(ConflictError):
            catalog_service.create_product(
                patch={"name": "Dup", "sku": existing.sku, "category_id": category.id,
                       "cost_price": Decimal("1.00"), "selling_price": Decimal("2.00")},
                actor_id=user.id,
            )

    def test_unknown_category(self, db_session, user):
        with pytest.raises(NotFoundError):
            catalog_service.create_product(
                patch={"name": "Orphan", "category_id": 404,
                       "cost_price": Decimal("1.00"), "selling_price": Decimal("2.00")},
                actor_id=user.id,
            )
        assert db.session.query(Product).count() == 0

    def test_stock_edit_becomes_single_adjustment(self, make_product, user):
        product = make_product(stock=10)

        catalog_service.update_product(product_id=product.id, patch={"stock": 6, "name": "Renamed"}, actor_id=user.id)

        assert _stock(product.id) == 6
        assert db.session.get(Product, product.id).name == "Renamed"
        rows, total = ledger.list_movements(product_id=product.id)
        assert total == 2
        assert (rows[0].type, rows[0].quantity, rows[0].reason) == ("out", 4, "adjustment")
        assert rows[0].notes == "Stock updated directly via product update"
        assert ledger.verify_ledger() == []

    def test_same_stock_value_records_nothing(self, make_product, user):
        product = make_product(stock=3)
        catalog_service.update_product(product_id=product.id, patch={"stock": 3}, actor_id=user.id)
        assert ledger.list_movements(product_id=product.id)[1] == 1

    def test_negative_stock_rejected(self, make_product, user):
        product = make_product(stock=3)
        with pytest.raises(ValidationError):
            catalog_service.update_product(product_id=product.id, patch={"stock": -1}, actor_id=user.id)

    def test_delete_unreferenced_product(self, make_product, user):
        product = make_product(stock=0)
        catalog_service.delete_product(product_id=product.id, actor_id=user.id)
        assert db.session.get(Product, product.id) is None

    def test_delete_referenced_product_conflicts(self, make_product, user):
        product = make_product(stock=2)
        with pytest.raises(ConflictError):
            catalog_service.delete_product(product_id=product.id, actor_id=user.id)
        assert db.session.get(Product, product.id) is not None

    def test_search(self, make_product):
        make_product(name="Blue Denim Jeans")
        make_product(name="Red Scarf")
        rows, total = catalog_service.list_products(search="denim")
        assert total == 1
        rows, total = catalog_service.list_products(search="AG00000")
        assert total == 2


class TestCategoriesAndSuppliers:
    def test_duplicate_category_name(self, category, user):
        with pytest.raises(ConflictError):
            catalog_service.create_category(patch={"name": category.name}, actor_id=user.id)

    def test_category_with_products_cannot_be_deleted(self, make_product, category, user):
        make_product()
        with pytest.raises(ConflictError):
            catalog_service.delete_category(category_id=category.id, actor_id=user.id)

    def test_supplier_crud_is_audited(self, db_session, user):
        supplier = catalog_service.create_supplier(patch={"name": "Coast Imports"}, actor_id=user.id)
        catalog_service.update_supplier(supplier_id=supplier.id, patch={"contact": "0711"}, actor_id=user.id)
        catalog_service.delete_supplier(supplier_id=supplier.id, actor_id=user.id)

        actions = [
            e.action for e in db.session.query(AuditLog)
            .filter_by(model_type="Supplier", model_id=supplier.id)
            .order_by(AuditLog.id)
        ]
        assert actions == ["created", "updated", "deleted"]

        updated = (
            db.session.query(AuditLog)
            .filter_by(model_type="Supplier", model_id=supplier.id, action="updated")
            .one()
        )
        assert updated.description == "Changed: contact"
