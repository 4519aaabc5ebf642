# Overview: Flask API routes for sales; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import sales_service
from ..validation import ValidationError, validate_line_items
from ..decorators import require_auth
from .responses import error_response, json_body, page_args, paginated

sales_bp = Blueprint("sales", __name__, url_prefix="/api/v1/sales")

MAX_CUSTOMER_NAME = 255


def _customer_name(value) -> str:
    name = str(value).strip() if value is not None else ""
    if not name:
        raise ValidationError("customer_name is required", {"customer_name": "is required"})
    if len(name) > MAX_CUSTOMER_NAME:
        raise ValidationError(
            f"customer_name exceeds max length {MAX_CUSTOMER_NAME}",
            {"customer_name": f"exceeds max length {MAX_CUSTOMER_NAME}"},
        )
    return name


@sales_bp.get("")
@require_auth
def list_sales_route():
    page, per_page = page_args()
    rows, total = sales_service.list_sales(
        search=request.args.get("search") or None,
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated([s.to_dict(include_items=False) for s in rows], total, page, per_page))


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Body: {customer_name, items: [{product_id, quantity, selling_price}]}

    422 with {product_id, product_name, available, requested} when any line
    cannot be covered by stock; nothing is recorded in that case.
    """
    try:
        data = json_body()
        customer_name = _customer_name(data.get("customer_name"))
        items = validate_line_items(data.get("items"), price_field="selling_price")
        sale = sales_service.create_sale(
            customer_name=customer_name,
            items=items,
            actor_id=g.current_user.id,
        )
    except Exception as e:
        return error_response(e, context="Create sale")

    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except Exception as e:
        return error_response(e, context="Get sale")
    return jsonify({"sale": sale.to_dict()})


@sales_bp.put("/<int:sale_id>")
@require_auth
def update_sale_route(sale_id: int):
    try:
        data = json_body()
        customer_name = _customer_name(data["customer_name"]) if "customer_name" in data else None
        items = validate_line_items(data["items"], price_field="selling_price") if "items" in data else None
        sale = sales_service.update_sale(
            sale_id=sale_id,
            customer_name=customer_name,
            items=items,
            actor_id=g.current_user.id,
        )
    except Exception as e:
        return error_response(e, context="Update sale")

    return jsonify({"sale": sale.to_dict()})


@sales_bp.delete("/<int:sale_id>")
@require_auth
def delete_sale_route(sale_id: int):
    try:
        sales_service.delete_sale(sale_id=sale_id, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Delete sale")
    return jsonify({"ok": True})
