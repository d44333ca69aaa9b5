from __future__ import annotations

from ..extensions import db
from brewops.time_utils import to_utc_z, utcnow

ORDER_STATUSES = ("pending", "preparing", "served", "cancelled")
PAYMENT_STATUSES = ("unpaid", "paid", "refunded")
ORDER_TYPES = ("dine_in", "takeaway", "delivery")
ITEM_SIZES = ("small", "medium", "large")
ITEM_STATUSES = ("queued", "in_preparation", "ready", "served")


class Order(db.Model):
    """
    Customer order aggregate: header, embedded items and notes, derived totals.

    WHY: subtotal_cents and total_cents are derived. They are only ever
    written by totals_service.recompute_totals, which save_order runs right
    before every commit.

    CONCURRENCY: version_id is an optimistic lock. A totals write computed
    from a stale snapshot fails with StaleDataError and the whole operation
    is retried (see services/concurrency.py).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_shop_status_created", "shop_id", "status", "created_at"),
        db.Index("ix_orders_cashier_payment_created", "cashier_id", "payment_status", "created_at"),
        # ids are never reused, so a removed order id can't resolve again
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(120), nullable=False)

    # Staff member credited with the sale
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # Actor who opened the order; never reassigned
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)
    order_type = db.Column(db.String(16), nullable=False, default="takeaway")
    table_number = db.Column(db.String(20), nullable=False, default="")

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0, index=True)
    currency = db.Column(db.String(10), nullable=False, default="USD")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("orders", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy="selectin",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    notes = db.relationship(
        "OrderNote",
        backref="order",
        lazy="selectin",
        order_by="OrderNote.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def find_item(self, item_id: int) -> "OrderItem | None":
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "customer_name": self.customer_name,
            "cashier_id": self.cashier_id,
            "cashier": self.cashier.to_summary() if self.cashier else None,
            "created_by_id": self.created_by_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "order_type": self.order_type,
            "table_number": self.table_number,
            "items": [item.to_dict() for item in self.items],
            "notes": [note.to_dict() for note in self.notes],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """
    Line item embedded in an order.

    unit_price_cents is fixed once the line exists; a price change means
    removing the line and adding a new one.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_min"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_order_items_price_nonneg"),
        db.Index("ix_order_items_order_name", "order_id", "menu_item_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    menu_item_name = db.Column(db.String(120), nullable=False)
    size = db.Column(db.String(16), nullable=False, default="medium")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    modifiers = db.Column(db.JSON, nullable=False, default=list)
    item_status = db.Column(db.String(16), nullable=False, default="queued")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "menu_item_name": self.menu_item_name,
            "size": self.size,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "modifiers": list(self.modifiers or []),
            "item_status": self.item_status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderNote(db.Model):
    """Free-text note on an order, attributed to the acting user."""
    __tablename__ = "order_notes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    text = db.Column(db.String(800), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    author = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "author": self.author.to_summary() if self.author else None,
            "text": self.text,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
