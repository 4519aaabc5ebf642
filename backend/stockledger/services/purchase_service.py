# Overview: Purchase transactions; receives goods into stock through the ledger.

from __future__ import annotations

import logging

from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Purchase, PurchaseItem, Supplier
from ..models.inventory import SOURCE_PURCHASE
from ..validation import NotFoundError, line_total
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from .expense_service import add_expense, record_purchase_cost, sync_purchase_cost
from . import stock_ledger_service as ledger
"""
Purchase Invariants (authoritative)

- Purchase.total_amount == SUM(item.quantity * item.cost_price) after create and update.
- Each purchase item is matched by one 'in'/'purchase' movement tagged with the purchase.
- Each purchase has one automatic cost expense (is_purchase_cost=True) whose amount
  equals total_amount, in the configured purchase cost category.
- Update and delete undo stock through new 'out'/'adjustment' movements, never by
  editing Product.stock directly.
- Stock is checked per product on the final result (current - old + new) before
  anything is written. Only a final stock below zero is rejected; an update
  applies its new items before taking the old ones back out, so the ledger
  never passes through a negative balance.
- Products are locked in ascending id order, the same order sales use.
- Create, update and delete each run in one DB transaction.
"""

logger = logging.getLogger(__name__)

PRICE_FIELD = "cost_price"


def _require_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def _load_purchase(purchase_id: int, *, lock: bool = False) -> Purchase:
    q = db.session.query(Purchase).filter_by(id=purchase_id)
    if lock:
        q = lock_for_update(q)
    purchase = q.first()
    if purchase is None:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def _quantities(lines) -> dict[int, int]:
    totals: dict[int, int] = {}
    for product_id, quantity in lines:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals


def _check_final_stock(outgoing: dict[int, int], incoming: dict[int, int]) -> None:
    """
    Lock every affected product and raise InsufficientStockError for the first
    one whose stock would end below zero after outgoing leaves and incoming
    arrives.
    """
    products = ledger.lock_products(set(outgoing) | set(incoming))
    for product_id, product in products.items():
        available = product.stock + incoming.get(product_id, 0)
        requested = outgoing.get(product_id, 0)
        if available < requested:
            logger.warning(
                "Purchase change rejected: product %s available=%s requested=%s",
                product_id, available, requested,
            )
            raise ledger.InsufficientStockError(product.id, product.name, available, requested)


def _receive_items(purchase: Purchase, items: list[dict], actor_id: int | None, note: str) -> None:
    for item in items:
        purchase.items.append(PurchaseItem(
            product_id=item["product_id"],
            quantity=item["quantity"],
            cost_price=item[PRICE_FIELD],
        ))
        ledger.record_movement(
            item["product_id"],
            "in",
            item["quantity"],
            "purchase",
            actor_id,
            notes=note,
            source_type=SOURCE_PURCHASE,
            source_id=purchase.id,
        )


def _reverse_items(purchase: Purchase, lines, actor_id: int | None, note: str) -> None:
    for product_id, quantity in lines:
        ledger.record_movement(
            product_id,
            "out",
            quantity,
            "adjustment",
            actor_id,
            notes=note,
            source_type=SOURCE_PURCHASE,
            source_id=purchase.id,
        )


def _item_lines(items) -> list[tuple[int, int]]:
    return [(item["product_id"], item["quantity"]) for item in items]


def get_purchase(purchase_id: int) -> Purchase:
    return _load_purchase(purchase_id)


def list_purchases(
    *,
    search: str | None = None,
    supplier_id: int | None = None,
    page: int = 1,
    per_page: int = 15,
):
    q = db.session.query(Purchase).options(selectinload(Purchase.items))
    if search:
        q = q.join(Supplier, Purchase.supplier_id == Supplier.id).filter(Supplier.name.ilike(f"%{search}%"))
    if supplier_id is not None:
        q = q.filter(Purchase.supplier_id == supplier_id)

    total = q.count()
    rows = (
        q.order_by(Purchase.created_at.desc(), Purchase.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def create_purchase(
    *,
    supplier_id: int,
    items: list[dict],
    actor_id: int | None,
    expenses: list[dict] | None = None,
) -> Purchase:
    """
    Record a purchase: items, one stock-in movement per item, the optional
    extra expenses and the automatic cost expense.

    items/expenses are already normalized (validation.validate_line_items,
    expense_service.validate_expense_entries).

    Raises:
        NotFoundError: supplier, product or expense category does not exist.
        TransactionFailure: database error; nothing was written.
    """
    def _op():
        _require_supplier(supplier_id)
        ledger.lock_products(item["product_id"] for item in items)

        purchase = Purchase(
            supplier_id=supplier_id,
            total_amount=line_total(items, PRICE_FIELD),
            created_by=actor_id,
        )
        db.session.add(purchase)
        db.session.flush()

        _receive_items(purchase, items, actor_id, f"Purchase #{purchase.id}")

        for entry in expenses or []:
            add_expense(
                expense_category_id=entry["expense_category_id"],
                amount=entry["amount"],
                expense_date=entry["date"],
                notes=entry.get("notes"),
                actor_id=actor_id,
                purchase=purchase,
            )
        record_purchase_cost(purchase, actor_id)

        append_audit_log(
            action="created",
            model_type="Purchase",
            model_id=purchase.id,
            user_id=actor_id,
            new_values=purchase.to_dict(),
        )
        return purchase

    purchase = run_in_transaction(_op, operation="Purchase creation")
    logger.info(
        "Purchase %s created by user %s: %s items, total %s",
        purchase.id, actor_id, len(purchase.items), purchase.total_amount,
    )
    return purchase


def update_purchase(
    *,
    purchase_id: int,
    actor_id: int | None,
    supplier_id: int | None = None,
    items: list[dict] | None = None,
) -> Purchase:
    """
    Change the supplier and/or replace the items of a purchase.

    Replacing items receives the new items, then takes every old item back
    out with an 'out'/'adjustment' movement. The cost expense follows the
    new total.

    Raises:
        NotFoundError: purchase, supplier or product does not exist.
        InsufficientStockError: a product would end below zero
            (current - old + new < 0).
    """
    def _op():
        purchase = _load_purchase(purchase_id, lock=True)
        old_values = purchase.to_dict()

        if supplier_id is not None:
            _require_supplier(supplier_id)
            purchase.supplier_id = supplier_id

        if items is not None:
            old_lines = [(item.product_id, item.quantity) for item in purchase.items]
            _check_final_stock(_quantities(old_lines), _quantities(_item_lines(items)))

            purchase.items.clear()
            db.session.flush()

            purchase.total_amount = line_total(items, PRICE_FIELD)
            _receive_items(purchase, items, actor_id, f"Purchase #{purchase.id} updated")
            _reverse_items(purchase, old_lines, actor_id, f"Purchase #{purchase.id} updated - stock reversal")
            db.session.flush()
            sync_purchase_cost(purchase, actor_id)

        db.session.flush()
        append_audit_log(
            action="updated",
            model_type="Purchase",
            model_id=purchase.id,
            user_id=actor_id,
            old_values=old_values,
            new_values=purchase.to_dict(),
        )
        return purchase

    purchase = run_in_transaction(_op, operation="Purchase update")
    logger.info("Purchase %s updated by user %s: total %s", purchase.id, actor_id, purchase.total_amount)
    return purchase


def delete_purchase(*, purchase_id: int, actor_id: int | None) -> None:
    """
    Remove a purchase, its items and its linked expenses, taking its goods
    back out of stock with 'out'/'adjustment' movements.
    """
    def _op():
        purchase = _load_purchase(purchase_id, lock=True)
        old_lines = [(item.product_id, item.quantity) for item in purchase.items]
        _check_final_stock(_quantities(old_lines), {})
        _reverse_items(purchase, old_lines, actor_id, f"Purchase #{purchase.id} deleted - stock reversal")
        append_audit_log(
            action="deleted",
            model_type="Purchase",
            model_id=purchase.id,
            user_id=actor_id,
            old_values=purchase.to_dict(),
        )
        db.session.delete(purchase)
        db.session.flush()

    run_in_transaction(_op, operation="Purchase deletion")
    logger.info("Purchase %s deleted by user %s", purchase_id, actor_id)
