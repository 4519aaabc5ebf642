# Overview: Flask API routes for the stock movement ledger and manual adjustments.

from flask import Blueprint, request, jsonify, g

from ..services import adjustment_service
from ..services import stock_ledger_service as ledger
from ..validation import ValidationError, coerce_int
from ..decorators import require_auth
from .responses import error_response, json_body, page_args, paginated

stock_movements_bp = Blueprint("stock_movements", __name__, url_prefix="/api/v1/stock-movements")

ADJUSTMENT_FIELDS = {"product_id", "type", "quantity", "reason", "notes"}


def _reject_unknown(data: dict, allowed: set[str]) -> None:
    for key in data:
        if key not in allowed:
            raise ValidationError(f"Field not allowed: {key}", {key: "not allowed"})


@stock_movements_bp.get("")
@require_auth
def list_movements_route():
    """
    Query params:
    - product_id: int
    - type: in | out
    - reason: purchase | sale | adjustment
    - page, per_page
    """
    page, per_page = page_args()
    try:
        rows, total = ledger.list_movements(
            product_id=request.args.get("product_id", type=int),
            type=request.args.get("type") or None,
            reason=request.args.get("reason") or None,
            page=page,
            per_page=per_page,
        )
    except Exception as e:
        return error_response(e, context="List stock movements")
    return jsonify(paginated([m.to_dict() for m in rows], total, page, per_page))


@stock_movements_bp.get("/reconciliation")
@require_auth
def reconciliation_route():
    """Products whose stock differs from the sum of their movements. Empty means consistent."""
    product_id = request.args.get("product_id", type=int)
    mismatches = ledger.verify_ledger(product_id)
    return jsonify({
        "consistent": not mismatches,
        "items": mismatches,
        "count": len(mismatches),
    })


@stock_movements_bp.post("")
@require_auth
def create_adjustment_route():
    """
    Manual adjustment.

    Body: {product_id, type, quantity, reason: "adjustment", notes}
    Purchases and sales record their own movements; any other reason is rejected.
    """
    try:
        data = json_body()
        _reject_unknown(data, ADJUSTMENT_FIELDS)
        missing = sorted(f for f in ("product_id", "type", "quantity") if data.get(f) is None)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {f: "is required" for f in missing},
            )
        movement = adjustment_service.create_adjustment(
            product_id=coerce_int("product_id", data["product_id"]),
            type=data["type"],
            quantity=data["quantity"],
            notes=data.get("notes"),
            reason=data.get("reason", "adjustment"),
            actor_id=g.current_user.id,
        )
    except Exception as e:
        return error_response(e, context="Create stock adjustment")

    return jsonify({"stock_movement": movement.to_dict()}), 201


@stock_movements_bp.get("/<int:movement_id>")
@require_auth
def get_movement_route(movement_id: int):
    try:
        movement = ledger.get_movement(movement_id)
    except Exception as e:
        return error_response(e, context="Get stock movement")
    return jsonify({"stock_movement": movement.to_dict()})


@stock_movements_bp.put("/<int:movement_id>")
@require_auth
def update_movement_route(movement_id: int):
    """Body: any of {type, quantity, notes, reason}. Only manual adjustments are editable."""
    try:
        data = json_body()
        _reject_unknown(data, ADJUSTMENT_FIELDS - {"product_id"})
        movement = adjustment_service.update_adjustment(
            movement_id=movement_id,
            type=data.get("type"),
            quantity=data.get("quantity"),
            notes=data.get("notes"),
            reason=data.get("reason"),
            actor_id=g.current_user.id,
        )
    except Exception as e:
        return error_response(e, context="Update stock movement")

    return jsonify({"stock_movement": movement.to_dict()})


@stock_movements_bp.delete("/<int:movement_id>")
@require_auth
def delete_movement_route(movement_id: int):
    try:
        adjustment_service.delete_adjustment(movement_id=movement_id, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Delete stock movement")
    return jsonify({"ok": True})
