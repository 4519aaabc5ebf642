from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import money


class Purchase(db.Model):
    """
    Purchase document: goods received from a supplier.

    total_amount is derived (SUM(quantity * cost_price) over items) and is
    recomputed by services.purchase_service whenever items change.
    Deleting a purchase removes its items and linked expenses.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.Index("ix_purchases_supplier_created", "supplier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    creator = db.relationship("User", foreign_keys=[created_by])
    items = db.relationship(
        "PurchaseItem",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseItem.id",
    )
    expenses = db.relationship(
        "Expense",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="Expense.id",
    )

    def __repr__(self) -> str:
        return f"<Purchase id={self.id} supplier_id={self.supplier_id} total={self.total_amount}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "supplier": {"id": self.supplier.id, "name": self.supplier.name} if self.supplier else None,
            "total_amount": money(self.total_amount),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["expenses"] = [expense.to_dict() for expense in self.expenses]
            data["expenses_total"] = money(sum((e.amount for e in self.expenses), 0))
        else:
            data["items_count"] = len(self.items)
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        db.CheckConstraint("cost_price >= 0", name="ck_purchase_items_cost_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(
        db.Integer,
        db.ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    cost_price = db.Column(db.Numeric(12, 2), nullable=False)

    purchase = db.relationship("Purchase", back_populates="items")
    product = db.relationship("Product")

    @property
    def subtotal(self):
        return self.quantity * self.cost_price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "quantity": self.quantity,
            "cost_price": money(self.cost_price),
            "subtotal": money(self.subtotal),
        }
