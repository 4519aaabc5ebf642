# Overview: Sale transactions; takes goods out of stock through the ledger, all or nothing.

from __future__ import annotations

import logging

from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Sale, SaleItem
from ..models.inventory import SOURCE_SALE
from ..validation import NotFoundError, line_total
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from . import stock_ledger_service as ledger
"""
Sale Invariants (authoritative)

- Sale.total_amount == SUM(item.quantity * item.selling_price).
- Each sale item is matched by one 'out'/'sale' movement tagged with the sale.
- Availability is checked for every line before anything is written: a sale
  either applies completely or not at all.
- Products are locked in ascending id order so concurrent sales queue on the
  same rows instead of deadlocking; the second sale re-reads stock once it
  holds the lock.
"""

logger = logging.getLogger(__name__)

PRICE_FIELD = "selling_price"


def _requested_by_product(items: list[dict]) -> dict[int, int]:
    # dicts keep insertion order, so the first failing product is reported first
    requested: dict[int, int] = {}
    for item in items:
        requested[item["product_id"]] = requested.get(item["product_id"], 0) + item["quantity"]
    return requested


def _check_availability(items: list[dict], released: dict[int, int] | None = None) -> None:
    """
    Raise InsufficientStockError for the first product whose stock (plus any
    quantity this sale already holds) cannot cover the requested quantity.
    """
    released = released or {}
    requested = _requested_by_product(items)
    products = ledger.lock_products(set(requested) | set(released))

    for product_id, quantity in requested.items():
        product = products[product_id]
        available = product.stock + released.get(product_id, 0)
        if available < quantity:
            logger.warning(
                "Sale rejected: product %s available=%s requested=%s",
                product_id, available, quantity,
            )
            raise ledger.InsufficientStockError(product.id, product.name, available, quantity)


def _issue_items(sale: Sale, items: list[dict], actor_id: int | None, note: str) -> None:
    for item in items:
        sale.items.append(SaleItem(
            product_id=item["product_id"],
            quantity=item["quantity"],
            selling_price=item[PRICE_FIELD],
        ))
        ledger.record_movement(
            item["product_id"],
            "out",
            item["quantity"],
            "sale",
            actor_id,
            notes=note,
            source_type=SOURCE_SALE,
            source_id=sale.id,
        )


def _return_items(sale: Sale, actor_id: int | None, note: str) -> None:
    for item in list(sale.items):
        ledger.record_movement(
            item.product_id,
            "in",
            item.quantity,
            "adjustment",
            actor_id,
            notes=note,
            source_type=SOURCE_SALE,
            source_id=sale.id,
        )


def _load_sale(sale_id: int, *, lock: bool = False) -> Sale:
    q = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        q = lock_for_update(q)
    sale = q.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def get_sale(sale_id: int) -> Sale:
    return _load_sale(sale_id)


def list_sales(*, search: str | None = None, page: int = 1, per_page: int = 15):
    q = db.session.query(Sale).options(selectinload(Sale.items))
    if search:
        q = q.filter(Sale.customer_name.ilike(f"%{search}%"))

    total = q.count()
    rows = (
        q.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def create_sale(*, customer_name: str, items: list[dict], actor_id: int | None) -> Sale:
    """
    Record a sale and one stock-out movement per item.

    Raises:
        ProductNotFoundError: an item references an unknown product.
        InsufficientStockError: any line cannot be covered; nothing is written.
    """
    def _op():
        _check_availability(items)

        sale = Sale(
            customer_name=customer_name,
            total_amount=line_total(items, PRICE_FIELD),
            created_by=actor_id,
        )
        db.session.add(sale)
        db.session.flush()

        _issue_items(sale, items, actor_id, f"Sale #{sale.id}")

        append_audit_log(
            action="created",
            model_type="Sale",
            model_id=sale.id,
            user_id=actor_id,
            new_values=sale.to_dict(),
        )
        return sale

    sale = run_in_transaction(_op, operation="Sale creation")
    logger.info(
        "Sale %s created by user %s: %s items, total %s",
        sale.id, actor_id, len(sale.items), sale.total_amount,
    )
    return sale


def update_sale(
    *,
    sale_id: int,
    actor_id: int | None,
    customer_name: str | None = None,
    items: list[dict] | None = None,
) -> Sale:
    """
    Change the customer and/or replace the items of a sale.

    The new items are checked against current stock plus what the old items
    hold before anything is written. Old items come back in as
    'in'/'adjustment' movements, new items go out as 'out'/'sale'.
    """
    def _op():
        sale = _load_sale(sale_id, lock=True)
        old_values = sale.to_dict()

        if customer_name is not None:
            sale.customer_name = customer_name

        if items is not None:
            held: dict[int, int] = {}
            for item in sale.items:
                held[item.product_id] = held.get(item.product_id, 0) + item.quantity
            _check_availability(items, released=held)

            _return_items(sale, actor_id, f"Sale #{sale.id} updated - stock reversal")
            sale.items.clear()
            db.session.flush()

            sale.total_amount = line_total(items, PRICE_FIELD)
            _issue_items(sale, items, actor_id, f"Sale #{sale.id} updated")

        db.session.flush()
        append_audit_log(
            action="updated",
            model_type="Sale",
            model_id=sale.id,
            user_id=actor_id,
            old_values=old_values,
            new_values=sale.to_dict(),
        )
        return sale

    sale = run_in_transaction(_op, operation="Sale update")
    logger.info("Sale %s updated by user %s: total %s", sale.id, actor_id, sale.total_amount)
    return sale


def delete_sale(*, sale_id: int, actor_id: int | None) -> None:
    """Remove a sale and put its goods back into stock with 'in'/'adjustment' movements."""
    def _op():
        sale = _load_sale(sale_id, lock=True)
        _return_items(sale, actor_id, f"Sale #{sale.id} deleted - stock reversal")
        append_audit_log(
            action="deleted",
            model_type="Sale",
            model_id=sale.id,
            user_id=actor_id,
            old_values=sale.to_dict(),
        )
        db.session.delete(sale)
        db.session.flush()

    run_in_transaction(_op, operation="Sale deletion")
    logger.info("Sale %s deleted by user %s", sale_id, actor_id)
