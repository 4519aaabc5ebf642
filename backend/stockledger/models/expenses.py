from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import money


class ExpenseCategory(db.Model):
    __tablename__ = "expense_categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<ExpenseCategory id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Expense(db.Model):
    """
    Expense entry.

    purchase_id links purchase-related costs. Exactly one expense per purchase
    carries is_purchase_cost=True: the automatic cost entry whose amount tracks
    Purchase.total_amount.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount >= 0", name="ck_expenses_amount_non_negative"),
        db.Index("ix_expenses_date", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_category_id = db.Column(
        db.Integer, db.ForeignKey("expense_categories.id"), nullable=False, index=True
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    date = db.Column(db.Date, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    purchase_id = db.Column(
        db.Integer,
        db.ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    is_purchase_cost = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    expense_category = db.relationship("ExpenseCategory", backref=db.backref("expenses", lazy=True))
    purchase = db.relationship("Purchase", back_populates="expenses")
    creator = db.relationship("User", foreign_keys=[created_by])

    def __repr__(self) -> str:
        return f"<Expense id={self.id} amount={self.amount} purchase_id={self.purchase_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_category_id": self.expense_category_id,
            "expense_category": (
                {"id": self.expense_category.id, "name": self.expense_category.name}
                if self.expense_category else None
            ),
            "amount": money(self.amount),
            "notes": self.notes,
            "date": self.date.isoformat() if self.date else None,
            "created_by": self.created_by,
            "purchase_id": self.purchase_id,
            "is_purchase_cost": self.is_purchase_cost,
            "created_at": to_utc_z(self.created_at),
        }
