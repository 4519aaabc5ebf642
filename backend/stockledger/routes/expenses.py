# Overview: Flask API routes for expense categories and expenses.

from flask import Blueprint, request, jsonify, g

from ..models import Expense, ExpenseCategory
from ..services import expense_service
from ..validation import ModelValidationPolicy, coerce_date, validate_payload
from ..decorators import require_auth
from .responses import bool_arg, error_response, json_body, page_args, paginated

EXPENSE_CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)

# is_purchase_cost is reserved for the automatic purchase cost entry
EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields={"expense_category_id", "amount", "notes", "date", "purchase_id"},
    required_on_create={"expense_category_id", "amount", "date"},
)

expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/v1")


def _date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    return coerce_date(name, raw)


@expenses_bp.get("/expense-categories")
@require_auth
def list_expense_categories_route():
    page, per_page = page_args()
    rows, total = expense_service.list_expense_categories(
        is_active=bool_arg("is_active"), page=page, per_page=per_page
    )
    return jsonify(paginated([c.to_dict() for c in rows], total, page, per_page))


@expenses_bp.post("/expense-categories")
@require_auth
def create_expense_category_route():
    try:
        payload = json_body()
        patch = validate_payload(
            model=ExpenseCategory, payload=payload, policy=EXPENSE_CATEGORY_POLICY, partial=False
        )
        category = expense_service.create_expense_category(patch=patch, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Create expense category")
    return jsonify({"expense_category": category.to_dict()}), 201


@expenses_bp.get("/expense-categories/<int:category_id>")
@require_auth
def get_expense_category_route(category_id: int):
    try:
        category = expense_service.get_expense_category(category_id)
    except Exception as e:
        return error_response(e, context="Get expense category")
    return jsonify({"expense_category": category.to_dict()})


@expenses_bp.put("/expense-categories/<int:category_id>")
@require_auth
def update_expense_category_route(category_id: int):
    try:
        payload = json_body()
        patch = validate_payload(
            model=ExpenseCategory, payload=payload, policy=EXPENSE_CATEGORY_POLICY, partial=True
        )
        category = expense_service.update_expense_category(
            category_id=category_id, patch=patch, actor_id=g.current_user.id
        )
    except Exception as e:
        return error_response(e, context="Update expense category")
    return jsonify({"expense_category": category.to_dict()})


@expenses_bp.delete("/expense-categories/<int:category_id>")
@require_auth
def delete_expense_category_route(category_id: int):
    try:
        expense_service.delete_expense_category(category_id=category_id, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Delete expense category")
    return jsonify({"ok": True})


@expenses_bp.get("/expenses")
@require_auth
def list_expenses_route():
    """
    Query params:
    - search: notes contain
    - expense_category_id, purchase_id: int
    - date_from, date_to: YYYY-MM-DD (inclusive)
    - page, per_page
    """
    page, per_page = page_args()
    try:
        rows, total = expense_service.list_expenses(
            search=request.args.get("search") or None,
            expense_category_id=request.args.get("expense_category_id", type=int),
            purchase_id=request.args.get("purchase_id", type=int),
            date_from=_date_arg("date_from"),
            date_to=_date_arg("date_to"),
            page=page,
            per_page=per_page,
        )
    except Exception as e:
        return error_response(e, context="List expenses")
    return jsonify(paginated([x.to_dict() for x in rows], total, page, per_page))


@expenses_bp.post("/expenses")
@require_auth
def create_expense_route():
    try:
        payload = json_body()
        patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=False)
        expense = expense_service.create_expense(patch=patch, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Create expense")
    return jsonify({"expense": expense.to_dict()}), 201


@expenses_bp.get("/expenses/<int:expense_id>")
@require_auth
def get_expense_route(expense_id: int):
    try:
        expense = expense_service.get_expense(expense_id)
    except Exception as e:
        return error_response(e, context="Get expense")
    return jsonify({"expense": expense.to_dict()})


@expenses_bp.put("/expenses/<int:expense_id>")
@require_auth
def update_expense_route(expense_id: int):
    """Body: any of {expense_category_id, amount, notes, date, purchase_id}."""
    try:
        payload = json_body()
        patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=True)
        expense = expense_service.update_expense(expense_id=expense_id, patch=patch, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Update expense")
    return jsonify({"expense": expense.to_dict()})


@expenses_bp.delete("/expenses/<int:expense_id>")
@require_auth
def delete_expense_route(expense_id: int):
    try:
        expense_service.delete_expense(expense_id=expense_id, actor_id=g.current_user.id)
    except Exception as e:
        return error_response(e, context="Delete expense")
    return jsonify({"ok": True})
