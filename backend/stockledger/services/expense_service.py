# Overview: Service-layer operations for expense categories and expenses.

from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Expense, ExpenseCategory, Purchase
from ..time_utils import today
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_amount, coerce_date, coerce_int
from .audit_service import append_audit_log
from .concurrency import run_in_transaction

DEFAULT_PURCHASE_COST_CATEGORY = "Bale Purchase"
PURCHASE_COST_DESCRIPTION = "Expenses related to purchasing bales or inventory items"


def purchase_cost_note(purchase_id: int) -> str:
    return f"Auto-created expense for Purchase #{purchase_id}"


def _purchase_cost_category_name() -> str:
    return current_app.config.get("PURCHASE_COST_CATEGORY") or DEFAULT_PURCHASE_COST_CATEGORY


# ---------------------------------------------------------------------------
# Expense categories
# ---------------------------------------------------------------------------

def get_expense_category(category_id: int) -> ExpenseCategory:
    category = db.session.get(ExpenseCategory, category_id)
    if category is None:
        raise NotFoundError(f"Expense category {category_id} not found")
    return category


def ensure_purchase_cost_category() -> ExpenseCategory:
    """Get-or-create the category used for automatic purchase cost expenses. Flush only."""
    name = _purchase_cost_category_name()
    category = db.session.query(ExpenseCategory).filter_by(name=name).first()
    if category is None:
        category = ExpenseCategory(name=name, description=PURCHASE_COST_DESCRIPTION, is_active=True)
        db.session.add(category)
        db.session.flush()
    return category


def list_expense_categories(*, is_active: bool | None = None, page: int = 1, per_page: int = 15):
    q = db.session.query(ExpenseCategory)
    if is_active is not None:
        q = q.filter(ExpenseCategory.is_active.is_(is_active))
    q = q.order_by(ExpenseCategory.name.asc())
    total = q.count()
    return q.offset((page - 1) * per_page).limit(per_page).all(), total


def _ensure_name_free(name: str, exclude_id: int | None = None) -> None:
    q = db.session.query(ExpenseCategory.id).filter(ExpenseCategory.name == name)
    if exclude_id is not None:
        q = q.filter(ExpenseCategory.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"Expense category '{name}' already exists")


def create_expense_category(*, patch: dict, actor_id: int | None) -> ExpenseCategory:
    def _op():
        _ensure_name_free(patch["name"])
        category = ExpenseCategory(**patch)
        db.session.add(category)
        db.session.flush()
        append_audit_log(
            action="created",
            model_type="ExpenseCategory",
            model_id=category.id,
            user_id=actor_id,
            new_values=category.to_dict(),
        )
        return category

    return run_in_transaction(_op, operation="Expense category creation")


def update_expense_category(*, category_id: int, patch: dict, actor_id: int | None) -> ExpenseCategory:
    """
    Raises:
        NotFoundError: unknown category.
        ConflictError: the new name is taken, or the category is the purchase
            cost category and the patch renames it.
    """
    def _op():
        category = get_expense_category(category_id)
        old_values = category.to_dict()
        if "name" in patch and patch["name"] != category.name:
            if category.name == _purchase_cost_category_name():
                raise ConflictError("The purchase cost category cannot be renamed")
            _ensure_name_free(patch["name"], exclude_id=category.id)
        for key, value in patch.items():
            setattr(category, key, value)
        db.session.flush()
        append_audit_log(
            action="updated",
            model_type="ExpenseCategory",
            model_id=category.id,
            user_id=actor_id,
            old_values=old_values,
            new_values=category.to_dict(),
        )
        return category

    return run_in_transaction(_op, operation="Expense category update")


def delete_expense_category(*, category_id: int, actor_id: int | None) -> None:
    def _op():
        category = get_expense_category(category_id)
        if db.session.query(Expense.id).filter_by(expense_category_id=category.id).first() is not None:
            raise ConflictError("Expense category has expenses and cannot be deleted")
        append_audit_log(
            action="deleted",
            model_type="ExpenseCategory",
            model_id=category.id,
            user_id=actor_id,
            old_values=category.to_dict(),
        )
        db.session.delete(category)

    run_in_transaction(_op, operation="Expense category deletion")


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

def validate_expense_entries(raw_entries) -> list[dict]:
    """
    Normalize the optional extra expenses sent with a purchase.
    Category existence is checked inside the purchase transaction.
    """
    if raw_entries is None:
        return []
    if not isinstance(raw_entries, list):
        raise ValidationError("expenses must be a list", {"expenses": "must be a list"})

    cleaned = []
    for index, raw in enumerate(raw_entries):
        prefix = f"expenses.{index}"
        if not isinstance(raw, dict):
            raise ValidationError(f"{prefix} must be an object", {prefix: "must be an object"})
        missing = [f for f in ("expense_category_id", "amount", "date") if raw.get(f) in (None, "")]
        if missing:
            raise ValidationError(
                f"{prefix} is missing: {', '.join(missing)}",
                {f"{prefix}.{f}": "is required" for f in missing},
            )
        notes = raw.get("notes")
        cleaned.append({
            "expense_category_id": coerce_int(f"{prefix}.expense_category_id", raw["expense_category_id"]),
            "amount": coerce_amount(f"{prefix}.amount", raw["amount"]),
            "date": coerce_date(f"{prefix}.date", raw["date"]),
            "notes": str(notes).strip() if notes is not None else None,
        })
    return cleaned


def add_expense(
    *,
    expense_category_id: int,
    amount: Decimal,
    expense_date: date,
    actor_id: int | None,
    notes: str | None = None,
    purchase: Purchase | None = None,
    is_purchase_cost: bool = False,
) -> Expense:
    """Insert one expense inside the caller's transaction. Flush only."""
    get_expense_category(expense_category_id)
    expense = Expense(
        expense_category_id=expense_category_id,
        amount=amount,
        date=expense_date,
        notes=notes,
        created_by=actor_id,
        purchase=purchase,
        is_purchase_cost=is_purchase_cost,
    )
    db.session.add(expense)
    db.session.flush()
    return expense


def record_purchase_cost(purchase: Purchase, actor_id: int | None) -> Expense:
    category = ensure_purchase_cost_category()
    return add_expense(
        expense_category_id=category.id,
        amount=purchase.total_amount,
        expense_date=today(),
        actor_id=actor_id,
        notes=purchase_cost_note(purchase.id),
        purchase=purchase,
        is_purchase_cost=True,
    )


def sync_purchase_cost(purchase: Purchase, actor_id: int | None) -> Expense:
    """Set the purchase's cost expense to its current total; recreate it if it was removed."""
    for expense in purchase.expenses:
        if expense.is_purchase_cost:
            expense.amount = purchase.total_amount
            db.session.flush()
            return expense
    return record_purchase_cost(purchase, actor_id)


def get_expense(expense_id: int) -> Expense:
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


def list_expenses(
    *,
    search: str | None = None,
    expense_category_id: int | None = None,
    purchase_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    per_page: int = 15,
):
    q = db.session.query(Expense)
    if search:
        q = q.filter(Expense.notes.ilike(f"%{search}%"))
    if expense_category_id is not None:
        q = q.filter(Expense.expense_category_id == expense_category_id)
    if purchase_id is not None:
        q = q.filter(Expense.purchase_id == purchase_id)
    if date_from is not None:
        q = q.filter(Expense.date >= date_from)
    if date_to is not None:
        q = q.filter(Expense.date <= date_to)

    total = q.count()
    rows = (
        q.order_by(Expense.date.desc(), Expense.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def create_expense(*, patch: dict, actor_id: int | None) -> Expense:
    def _op():
        purchase = None
        if patch.get("purchase_id") is not None:
            purchase = db.session.get(Purchase, patch["purchase_id"])
            if purchase is None:
                raise NotFoundError(f"Purchase {patch['purchase_id']} not found")
        expense = add_expense(
            expense_category_id=patch["expense_category_id"],
            amount=patch["amount"],
            expense_date=patch["date"],
            actor_id=actor_id,
            notes=patch.get("notes"),
            purchase=purchase,
        )
        append_audit_log(
            action="created",
            model_type="Expense",
            model_id=expense.id,
            user_id=actor_id,
            new_values=expense.to_dict(),
        )
        return expense

    return run_in_transaction(_op, operation="Expense creation")


# Owned by the purchase on its automatic cost expense
PURCHASE_COST_LOCKED_FIELDS = ("amount", "purchase_id")


def update_expense(*, expense_id: int, patch: dict, actor_id: int | None) -> Expense:
    """
    Apply a partial update to an expense.

    The automatic purchase cost expense follows its purchase: its amount and
    purchase_id cannot be changed here, while notes, date and category can.

    Raises:
        NotFoundError: unknown expense, category or purchase.
        ConflictError: a locked field of the purchase cost expense would change.
    """
    def _op():
        expense = get_expense(expense_id)
        old_values = expense.to_dict()

        if expense.is_purchase_cost:
            locked = sorted(
                f for f in PURCHASE_COST_LOCKED_FIELDS
                if f in patch and patch[f] != getattr(expense, f)
            )
            if locked:
                raise ConflictError(
                    f"Purchase cost expense follows its purchase; cannot change: {', '.join(locked)}"
                )

        data = dict(patch)
        if "expense_category_id" in data:
            expense.expense_category = get_expense_category(data.pop("expense_category_id"))
        if "purchase_id" in data:
            purchase_id = data.pop("purchase_id")
            purchase = None
            if purchase_id is not None:
                purchase = db.session.get(Purchase, purchase_id)
                if purchase is None:
                    raise NotFoundError(f"Purchase {purchase_id} not found")
            expense.purchase = purchase
        for key, value in data.items():
            setattr(expense, key, value)
        db.session.flush()

        append_audit_log(
            action="updated",
            model_type="Expense",
            model_id=expense.id,
            user_id=actor_id,
            old_values=old_values,
            new_values=expense.to_dict(),
        )
        return expense

    return run_in_transaction(_op, operation="Expense update")


def delete_expense(*, expense_id: int, actor_id: int | None) -> None:
    def _op():
        expense = get_expense(expense_id)
        append_audit_log(
            action="deleted",
            model_type="Expense",
            model_id=expense.id,
            user_id=actor_id,
            old_values=expense.to_dict(),
        )
        db.session.delete(expense)

    run_in_transaction(_op, operation="Expense deletion")
