# Overview: Stock ledger; the only code path that changes Product.stock.

from __future__ import annotations

import logging

from sqlalchemy import case, func

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_REASONS, MOVEMENT_TYPES
from ..validation import NotFoundError, ValidationError, coerce_int
from .concurrency import lock_for_update
"""
Stock Ledger Invariants (authoritative)

- Product.stock is written here and nowhere else.
- Every stock change inserts exactly one StockMovement in the same DB transaction.
- For every product, at every commit:
      stock == SUM(quantity for 'in') - SUM(quantity for 'out')
- Stock never goes negative. The product row is locked before it is read, so
  the check and the write see the same value.

Transaction boundary:
- Functions here only flush. The calling service opens the transaction
  (concurrency.run_in_transaction) and commits or rolls back.
"""

logger = logging.getLogger(__name__)


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class MovementNotFoundError(NotFoundError):
    def __init__(self, movement_id):
        super().__init__(f"Stock movement {movement_id} not found")
        self.movement_id = movement_id


class InsufficientStockError(Exception):
    """Requested 'out' quantity exceeds the stock on hand."""

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product '{product_name}'. "
            f"Available: {available}, Requested: {requested}"
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "available": self.available,
            "requested": self.requested,
        }


def _signed(movement_type: str, quantity: int) -> int:
    return quantity if movement_type == "in" else -quantity


def _validate_type(movement_type) -> str:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError("type must be 'in' or 'out'", {"type": "must be 'in' or 'out'"})
    return movement_type


def _validate_reason(reason) -> str:
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(
            f"reason must be one of: {', '.join(MOVEMENT_REASONS)}",
            {"reason": f"must be one of: {', '.join(MOVEMENT_REASONS)}"},
        )
    return reason


def _validate_quantity(quantity) -> int:
    quantity = coerce_int("quantity", quantity)
    if quantity < 1:
        raise ValidationError("quantity must be >= 1", {"quantity": "must be >= 1"})
    return quantity


# ---------------------------------------------------------------------------
# Product facade (read-only lookups)
# ---------------------------------------------------------------------------

def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def lock_products(product_ids) -> dict[int, Product]:
    """Lock several product rows in ascending id order so concurrent writers cannot deadlock."""
    return {pid: get_product(pid, lock=True) for pid in sorted(set(product_ids))}


def product_exists(product_id: int) -> bool:
    return db.session.query(Product.id).filter_by(id=product_id).first() is not None


def current_stock(product_id: int) -> int:
    return get_product(product_id).stock


def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise MovementNotFoundError(movement_id)
    return movement


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def _apply_delta(product: Product, delta: int, requested: int) -> None:
    new_stock = product.stock + delta
    if new_stock < 0:
        logger.warning(
            "Rejected stock change for product %s: available=%s requested=%s",
            product.id, product.stock, requested,
        )
        raise InsufficientStockError(product.id, product.name, product.stock, requested)
    product.stock = new_stock


def record_movement(
    product_id: int,
    type: str,
    quantity: int,
    reason: str,
    actor_id: int | None,
    notes: str | None = None,
    source_type: str | None = None,
    source_id: int | None = None,
) -> StockMovement:
    """
    Apply one stock change and write its movement row.

    Raises:
        ValidationError: bad type/reason/quantity.
        ProductNotFoundError: unknown product id.
        InsufficientStockError: an 'out' larger than the current stock.
    """
    movement_type = _validate_type(type)
    reason = _validate_reason(reason)
    quantity = _validate_quantity(quantity)

    product = get_product(product_id, lock=True)
    _apply_delta(product, _signed(movement_type, quantity), quantity)

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        notes=notes,
        source_type=source_type,
        source_id=source_id,
        created_by=actor_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def reverse_movement(movement_id: int, actor_id: int | None, note: str | None = None) -> StockMovement:
    """
    Undo a movement's effect by recording the opposite movement.
    The original row is kept.
    """
    original = get_movement(movement_id)
    opposite = "out" if original.type == "in" else "in"
    notes = f"Reversal of movement #{original.id}"
    if note:
        notes = f"{notes}: {note}"
    return record_movement(
        original.product_id,
        opposite,
        original.quantity,
        "adjustment",
        actor_id,
        notes=notes,
        source_type=original.source_type,
        source_id=original.source_id,
    )


def update_movement(
    movement_id: int,
    actor_id: int | None,
    new_type: str | None = None,
    new_quantity: int | None = None,
    new_notes: str | None = None,
) -> StockMovement:
    """
    Rewrite a movement in place and move stock by the net difference
    between its old and new effect, in a single step.
    """
    movement = get_movement(movement_id)

    movement_type = _validate_type(new_type) if new_type is not None else movement.type
    quantity = _validate_quantity(new_quantity) if new_quantity is not None else movement.quantity

    product = get_product(movement.product_id, lock=True)
    delta = _signed(movement_type, quantity) - movement.signed_quantity
    if delta:
        _apply_delta(product, delta, abs(delta))

    movement.type = movement_type
    movement.quantity = quantity
    if new_notes is not None:
        movement.notes = new_notes
    db.session.flush()

    logger.info(
        "Movement %s updated by user %s: product=%s delta=%s",
        movement.id, actor_id, product.id, delta,
    )
    return movement


def delete_movement(movement_id: int, actor_id: int | None) -> None:
    """Revert a movement's stock effect and remove its row."""
    movement = get_movement(movement_id)
    product = get_product(movement.product_id, lock=True)
    reverse_delta = -movement.signed_quantity
    _apply_delta(product, reverse_delta, movement.quantity)

    db.session.delete(movement)
    db.session.flush()

    logger.info(
        "Movement %s deleted by user %s: product=%s delta=%s",
        movement_id, actor_id, product.id, reverse_delta,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def ledger_balance(product_id: int) -> int:
    signed = case((StockMovement.type == "in", StockMovement.quantity), else_=-StockMovement.quantity)
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def verify_ledger(product_id: int | None = None) -> list[dict]:
    """
    Reconcile Product.stock against the movement ledger.

    Returns one entry per product whose stored stock differs from the sum of
    its signed movements. An empty list means the ledger is consistent.
    """
    signed = case((StockMovement.type == "in", StockMovement.quantity), else_=-StockMovement.quantity)
    balances = (
        db.session.query(
            StockMovement.product_id.label("product_id"),
            func.sum(signed).label("balance"),
        )
        .group_by(StockMovement.product_id)
        .subquery()
    )
    q = (
        db.session.query(Product, func.coalesce(balances.c.balance, 0))
        .outerjoin(balances, balances.c.product_id == Product.id)
    )
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    mismatches = []
    for product, balance in q.order_by(Product.id.asc()).all():
        balance = int(balance or 0)
        if product.stock != balance:
            mismatches.append({
                "product_id": product.id,
                "product_name": product.name,
                "stock": product.stock,
                "ledger_balance": balance,
                "difference": product.stock - balance,
            })
    return mismatches


def movements_for_source(source_type: str, source_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(source_type=source_type, source_id=source_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


def list_movements(
    *,
    product_id: int | None = None,
    type: str | None = None,
    reason: str | None = None,
    page: int = 1,
    per_page: int = 15,
):
    """
    Newest first. Returns (movements, total).
    """
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if type:
        q = q.filter(StockMovement.type == _validate_type(type))
    if reason:
        q = q.filter(StockMovement.reason == _validate_reason(reason))

    total = q.count()
    movements = (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return movements, total
