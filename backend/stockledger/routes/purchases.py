# Overview: Flask API routes for purchases; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import purchase_service
from ..services.expense_service import validate_expense_entries
from ..validation import ValidationError, coerce_int, validate_line_items
from ..decorators import require_auth
from .responses import error_response, json_body, page_args, paginated

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/v1/purchases")


@purchases_bp.get("")
@require_auth
def list_purchases_route():
    """
    Query params:
    - search: supplier name contains
    - supplier_id: int
    - page, per_page
    """
    page, per_page = page_args()
    rows, total = purchase_service.list_purchases(
        search=request.args.get("search") or None,
        supplier_id=request.args.get("supplier_id", type=int),
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated([p.to_dict(include_items=False) for p in rows], total, page, per_page))


@purchases_bp.post("")
@require_auth
def create_purchase_route():
    """
    Body: {supplier_id, items: [{product_id, quantity, cost_price}],
           expenses?: [{expense_category_id, amount, notes?, date}]}
    """
    try:
        data = json_body()
        if data.get("supplier_id") is None:
            raise ValidationError("supplier_id is required", {"supplier_id": "is required"})
        supplier_id = coerce_int("supplier_id", data["supplier_id"])
        items = validate_line_items(data.get("items"), price_field="cost_price")
        expenses = validate_expense_entries(data.get("expenses"))

        purchase = purchase_service.create_purchase(
            supplier_id=supplier_id,
            items=items,
            expenses=expenses,
            actor_id=g.current_user.id,
        )
    except Exception as e:
        return error_response(e, context="Create purchase")

    return jsonify({"purchase": purchase.to_dict()}), 201


@purchases_bp.get("/<int:purchase_id>")
@require_auth
def get_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase(purchase_id)
    except Exception as e:
        return error_response(e, context="Get purchase")
    return jsonify({"purchase": purchase.to_dict()})


@purchases_bp.put("/<int:purchase_id>")
@require_auth
def update_purchase_route(purchase_id: int):
    """
    Body: {supplier_id?, items?}. Supplying items replaces all existing items.
    """
    try:
        data = json_body()
        supplier_id = coerce_int("supplier_id", data["supplier_id"]) if data.get("supplier_id") is not None else None
        items = validate_line_items(data["items"], price_field="cost_price") if "items" in data else None

        purchase = purchase_service.update_purchase(
            purchase_id=purchase_id,
            supplier_id=supplier_id,
            items=items,
            actor_id=g.current_user.id,
        )
    except Exception as e:
        return error_response(e, context="Update purchase")

    return jsonify({"purchase": purchase.to_dict()})


@purchases_bp.delete("/<int:purchase_id>")
@require_auth
def delete_purchase_route(purchase_id: int):
    try:
        purchase_service.delete_purchase(purchase_id=purchase_id, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Delete purchase")
    return jsonify({"ok": True})
