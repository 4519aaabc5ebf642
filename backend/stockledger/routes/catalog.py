# Overview: Flask API routes for products, categories and suppliers; parses input and returns JSON responses.

"""
Catalog routes.

Product stock is read-only metadata here: a "stock" value on create or update
is turned into an adjustment movement by the catalog service, never written
directly.
"""
from flask import Blueprint, request, jsonify, g

from ..models import Category, Product, Supplier
from ..services import catalog_service
from ..validation import ModelValidationPolicy, validate_payload
from ..decorators import require_auth
from .responses import bool_arg, error_response, json_body, page_args, paginated

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "sku", "category_id", "cost_price", "selling_price", "stock", "is_active"},
    required_on_create={"name", "category_id", "cost_price", "selling_price"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact", "email", "address"},
    required_on_create={"name"},
)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/v1")


def _product_patch(partial: bool) -> dict:
    payload = json_body()
    # A missing SKU is generated on create; null means "not supplied"
    if payload.get("sku") in (None, ""):
        payload = {k: v for k, v in payload.items() if k != "sku"}
    return validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=partial)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

@catalog_bp.get("/products")
@require_auth
def list_products_route():
    """
    Query params:
    - search: name or SKU contains
    - category_id: int
    - is_active: bool
    - page, per_page
    """
    page, per_page = page_args()
    rows, total = catalog_service.list_products(
        search=request.args.get("search") or None,
        category_id=request.args.get("category_id", type=int),
        is_active=bool_arg("is_active"),
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated([p.to_dict() for p in rows], total, page, per_page))


@catalog_bp.post("/products")
@require_auth
def create_product_route():
    try:
        patch = _product_patch(partial=False)
        product = catalog_service.create_product(patch=patch, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Create product")
    return jsonify({"product": product.to_dict()}), 201


@catalog_bp.get("/products/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
    except Exception as e:
        return error_response(e, context="Get product")
    return jsonify({"product": product.to_dict()})


@catalog_bp.put("/products/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    try:
        patch = _product_patch(partial=True)
        product = catalog_service.update_product(product_id=product_id, patch=patch, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Update product")
    return jsonify({"product": product.to_dict()})


@catalog_bp.delete("/products/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    try:
        catalog_service.delete_product(product_id=product_id, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Delete product")
    return jsonify({"ok": True})


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

@catalog_bp.get("/categories")
@require_auth
def list_categories_route():
    page, per_page = page_args()
    rows, total = catalog_service.list_categories(
        search=request.args.get("search") or None,
        is_active=bool_arg("is_active"),
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated([c.to_dict() for c in rows], total, page, per_page))


@catalog_bp.post("/categories")
@require_auth
def create_category_route():
    try:
        payload = json_body()
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        category = catalog_service.create_category(patch=patch, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Create category")
    return jsonify({"category": category.to_dict()}), 201


@catalog_bp.get("/categories/<int:category_id>")
@require_auth
def get_category_route(category_id: int):
    try:
        category = catalog_service.get_category(category_id)
    except Exception as e:
        return error_response(e, context="Get category")
    return jsonify({"category": category.to_dict()})


@catalog_bp.put("/categories/<int:category_id>")
@require_auth
def update_category_route(category_id: int):
    try:
        payload = json_body()
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        category = catalog_service.update_category(
            category_id=category_id, patch=patch, actor_id=g.current_user.id
        )
    except Exception as e:
        return error_response(e, context="Update category")
    return jsonify({"category": category.to_dict()})


@catalog_bp.delete("/categories/<int:category_id>")
@require_auth
def delete_category_route(category_id: int):
    try:
        catalog_service.delete_category(category_id=category_id, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Delete category")
    return jsonify({"ok": True})


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

@catalog_bp.get("/suppliers")
@require_auth
def list_suppliers_route():
    page, per_page = page_args()
    rows, total = catalog_service.list_suppliers(
        search=request.args.get("search") or None,
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated([s.to_dict() for s in rows], total, page, per_page))


@catalog_bp.post("/suppliers")
@require_auth
def create_supplier_route():
    try:
        payload = json_body()
        patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
        supplier = catalog_service.create_supplier(patch=patch, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Create supplier")
    return jsonify({"supplier": supplier.to_dict()}), 201


@catalog_bp.get("/suppliers/<int:supplier_id>")
@require_auth
def get_supplier_route(supplier_id: int):
    try:
        supplier = catalog_service.get_supplier(supplier_id)
    except Exception as e:
        return error_response(e, context="Get supplier")
    return jsonify({"supplier": supplier.to_dict()})


@catalog_bp.put("/suppliers/<int:supplier_id>")
@require_auth
def update_supplier_route(supplier_id: int):
    try:
        payload = json_body()
        patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
        supplier = catalog_service.update_supplier(
            supplier_id=supplier_id, patch=patch, actor_id=g.current_user.id
        )
    except Exception as e:
        return error_response(e, context="Update supplier")
    return jsonify({"supplier": supplier.to_dict()})


@catalog_bp.delete("/suppliers/<int:supplier_id>")
@require_auth
def delete_supplier_route(supplier_id: int):
    try:
        catalog_service.delete_supplier(supplier_id=supplier_id, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Delete supplier")
    return jsonify({"ok": True})
