# Overview: Service-layer operations for categories, suppliers and products.

from __future__ import annotations

import logging
import re

from sqlalchemy import or_

from ..extensions import db
from ..models import Category, Product, PurchaseItem, SaleItem, StockMovement, Supplier
from ..models.inventory import SOURCE_PRODUCT
from ..validation import ConflictError, NotFoundError, ValidationError
from .audit_service import append_audit_log
from .concurrency import run_in_transaction
from . import stock_ledger_service as ledger
"""
Catalog Invariants

- Product metadata (name, sku, prices, category, is_active) is edited here.
- Product.stock is never assigned here. Opening stock and direct stock edits
  become 'adjustment' movements through the stock ledger.
- A product referenced by purchase items, sale items or movements cannot be deleted.
"""

logger = logging.getLogger(__name__)

SKU_PREFIX = "AG"
SKU_PATTERN = re.compile(r"^AG(\d{6})$")

INITIAL_STOCK_NOTE = "Initial stock on product creation"
DIRECT_STOCK_NOTE = "Stock updated directly via product update"


def _paginate(query, page: int, per_page: int):
    total = query.count()
    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    return rows, total


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return category


def list_categories(*, search: str | None = None, is_active: bool | None = None, page: int = 1, per_page: int = 15):
    q = db.session.query(Category)
    if search:
        q = q.filter(Category.name.ilike(f"%{search}%"))
    if is_active is not None:
        q = q.filter(Category.is_active.is_(is_active))
    return _paginate(q.order_by(Category.name.asc()), page, per_page)


def _ensure_category_name_free(name: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Category.id).filter(Category.name == name)
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"Category '{name}' already exists")


def create_category(*, patch: dict, actor_id: int | None) -> Category:
    def _op():
        _ensure_category_name_free(patch["name"])
        category = Category(**patch)
        db.session.add(category)
        db.session.flush()
        append_audit_log(
            action="created",
            model_type="Category",
            model_id=category.id,
            user_id=actor_id,
            new_values=category.to_dict(),
        )
        return category

    return run_in_transaction(_op, operation="Category creation")


def update_category(*, category_id: int, patch: dict, actor_id: int | None) -> Category:
    def _op():
        category = get_category(category_id)
        old_values = category.to_dict()
        if "name" in patch:
            _ensure_category_name_free(patch["name"], exclude_id=category.id)
        for key, value in patch.items():
            setattr(category, key, value)
        db.session.flush()
        append_audit_log(
            action="updated",
            model_type="Category",
            model_id=category.id,
            user_id=actor_id,
            old_values=old_values,
            new_values=category.to_dict(),
        )
        return category

    return run_in_transaction(_op, operation="Category update")


def delete_category(*, category_id: int, actor_id: int | None) -> None:
    def _op():
        category = get_category(category_id)
        if db.session.query(Product.id).filter_by(category_id=category.id).first() is not None:
            raise ConflictError("Category has products and cannot be deleted")
        append_audit_log(
            action="deleted",
            model_type="Category",
            model_id=category.id,
            user_id=actor_id,
            old_values=category.to_dict(),
        )
        db.session.delete(category)

    run_in_transaction(_op, operation="Category deletion")


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def list_suppliers(*, search: str | None = None, page: int = 1, per_page: int = 15):
    q = db.session.query(Supplier)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Supplier.name.ilike(like), Supplier.contact.ilike(like), Supplier.email.ilike(like)))
    return _paginate(q.order_by(Supplier.name.asc()), page, per_page)


def create_supplier(*, patch: dict, actor_id: int | None) -> Supplier:
    def _op():
        supplier = Supplier(**patch)
        db.session.add(supplier)
        db.session.flush()
        append_audit_log(
            action="created",
            model_type="Supplier",
            model_id=supplier.id,
            user_id=actor_id,
            new_values=supplier.to_dict(),
        )
        return supplier

    return run_in_transaction(_op, operation="Supplier creation")


def update_supplier(*, supplier_id: int, patch: dict, actor_id: int | None) -> Supplier:
    def _op():
        supplier = get_supplier(supplier_id)
        old_values = supplier.to_dict()
        for key, value in patch.items():
            setattr(supplier, key, value)
        db.session.flush()
        append_audit_log(
            action="updated",
            model_type="Supplier",
            model_id=supplier.id,
            user_id=actor_id,
            old_values=old_values,
            new_values=supplier.to_dict(),
        )
        return supplier

    return run_in_transaction(_op, operation="Supplier update")


def delete_supplier(*, supplier_id: int, actor_id: int | None) -> None:
    def _op():
        supplier = get_supplier(supplier_id)
        if supplier.purchases:
            raise ConflictError("Supplier has purchases and cannot be deleted")
        append_audit_log(
            action="deleted",
            model_type="Supplier",
            model_id=supplier.id,
            user_id=actor_id,
            old_values=supplier.to_dict(),
        )
        db.session.delete(supplier)

    run_in_transaction(_op, operation="Supplier deletion")


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def generate_sku() -> str:
    """Next AG###### code, one above the highest existing one."""
    highest = 0
    for (sku,) in db.session.query(Product.sku).filter(Product.sku.like(f"{SKU_PREFIX}%")).all():
        match = SKU_PATTERN.match(sku or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{SKU_PREFIX}{highest + 1:06d}"


def _ensure_sku_free(sku: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"SKU '{sku}' already exists")


def _validate_stock_value(value) -> int:
    if value < 0:
        raise ValidationError("stock must be >= 0", {"stock": "must be >= 0"})
    return value


def get_product(product_id: int) -> Product:
    return ledger.get_product(product_id)


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    is_active: bool | None = None,
    page: int = 1,
    per_page: int = 15,
):
    q = db.session.query(Product)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Product.name.ilike(like), Product.sku.ilike(like)))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if is_active is not None:
        q = q.filter(Product.is_active.is_(is_active))
    return _paginate(q.order_by(Product.name.asc(), Product.id.asc()), page, per_page)


def create_product(*, patch: dict, actor_id: int | None) -> Product:
    """
    Create a product. A positive opening stock is recorded as an
    'in'/'adjustment' movement so the ledger balances from the first row.
    """
    data = dict(patch)
    opening_stock = _validate_stock_value(data.pop("stock", 0) or 0)

    def _op():
        get_category(data["category_id"])
        if data.get("sku"):
            _ensure_sku_free(data["sku"])
        else:
            data["sku"] = generate_sku()

        product = Product(stock=0, **data)
        db.session.add(product)
        db.session.flush()

        if opening_stock > 0:
            ledger.record_movement(
                product.id,
                "in",
                opening_stock,
                "adjustment",
                actor_id,
                notes=INITIAL_STOCK_NOTE,
                source_type=SOURCE_PRODUCT,
                source_id=product.id,
            )

        append_audit_log(
            action="created",
            model_type="Product",
            model_id=product.id,
            user_id=actor_id,
            new_values=product.to_dict(),
        )
        return product

    product = run_in_transaction(_op, operation="Product creation")
    logger.info("Product %s (%s) created by user %s", product.id, product.sku, actor_id)
    return product


def update_product(*, product_id: int, patch: dict, actor_id: int | None) -> Product:
    """
    Update product metadata. A 'stock' value in the patch becomes a single
    adjustment movement for the difference.
    """
    data = dict(patch)
    target_stock = data.pop("stock", None)
    if target_stock is not None:
        _validate_stock_value(target_stock)

    def _op():
        product = ledger.get_product(product_id, lock=True)
        old_values = product.to_dict()

        if "category_id" in data:
            get_category(data["category_id"])
        if data.get("sku"):
            _ensure_sku_free(data["sku"], exclude_id=product.id)
        elif "sku" in data:
            data.pop("sku")

        for key, value in data.items():
            setattr(product, key, value)

        if target_stock is not None and target_stock != product.stock:
            difference = target_stock - product.stock
            ledger.record_movement(
                product.id,
                "in" if difference > 0 else "out",
                abs(difference),
                "adjustment",
                actor_id,
                notes=DIRECT_STOCK_NOTE,
                source_type=SOURCE_PRODUCT,
                source_id=product.id,
            )

        db.session.flush()
        append_audit_log(
            action="updated",
            model_type="Product",
            model_id=product.id,
            user_id=actor_id,
            old_values=old_values,
            new_values=product.to_dict(),
        )
        return product

    return run_in_transaction(_op, operation="Product update")


def product_is_referenced(product_id: int) -> bool:
    for model in (PurchaseItem, SaleItem, StockMovement):
        if db.session.query(model.id).filter(model.product_id == product_id).first() is not None:
            return True
    return False


def delete_product(*, product_id: int, actor_id: int | None) -> None:
    def _op():
        product = ledger.get_product(product_id, lock=True)
        if product_is_referenced(product.id):
            raise ConflictError(
                "Product has purchase, sale or stock movement history and cannot be deleted; "
                "deactivate it instead"
            )
        append_audit_log(
            action="deleted",
            model_type="Product",
            model_id=product.id,
            user_id=actor_id,
            old_values=product.to_dict(),
        )
        db.session.delete(product)

    run_in_transaction(_op, operation="Product deletion")
    logger.info("Product %s deleted by user %s", product_id, actor_id)
