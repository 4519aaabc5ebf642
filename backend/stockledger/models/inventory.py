from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

MOVEMENT_TYPES = ("in", "out")
MOVEMENT_REASONS = ("purchase", "sale", "adjustment")

# Tagged reference to the document that caused a movement
SOURCE_PURCHASE = "purchase"
SOURCE_SALE = "sale"
SOURCE_PRODUCT = "product"


class StockMovement(db.Model):
    """
    One signed change to a product's stock.

    Ledger invariant (see services/stock_ledger_service.py):
        Product.stock == SUM(quantity if type == 'in' else -quantity)

    quantity is always positive; the sign comes from type.
    source_type/source_id point at the owning purchase or sale (NULL for manual
    adjustments). notes keeps the human-readable "Purchase #7" text.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("type IN ('in', 'out')", name="ck_stock_movements_type"),
        db.CheckConstraint(
            "reason IN ('purchase', 'sale', 'adjustment')",
            name="ck_stock_movements_reason",
        ),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_source", "source_type", "source_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(8), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(16), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    source_type = db.Column(db.String(16), nullable=True)
    source_id = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))
    creator = db.relationship("User", foreign_keys=[created_by])

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.type == "in" else -self.quantity

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} "
            f"type={self.type} quantity={self.quantity} reason={self.reason}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "type": self.type,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "reason": self.reason,
            "notes": self.notes,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
