from __future__ import annotations

from ..extensions import db
from brewops.time_utils import to_utc_z, utcnow

SHOP_STATUSES = ("open", "closed", "maintenance")
STAFF_ROLES = ("owner", "manager", "barista", "cashier")


class Shop(db.Model):
    """
    Coffee shop registry record.

    Consumed by the order core for orderability and staff checks only.
    Shops are archived, never deleted, so historical orders keep a valid
    shop reference.
    """
    __tablename__ = "shops"
    __table_args__ = (
        db.Index("ix_shops_owner_created", "owner_id", "created_at"),
        db.Index("ix_shops_status_city", "status", "city"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="open", index=True)

    city = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(300), nullable=False)

    archived = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    owner = db.relationship("User", foreign_keys=[owner_id])
    staff = db.relationship(
        "ShopStaff",
        backref="shop",
        lazy="selectin",
        order_by="ShopStaff.id",
        cascade="all, delete-orphan",
    )

    def staff_user_ids(self) -> set[int]:
        return {member.user_id for member in self.staff}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "status": self.status,
            "city": self.city,
            "address": self.address,
            "archived": self.archived,
            "staff": [member.to_dict() for member in self.staff],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ShopStaff(db.Model):
    """Staff membership: one row per (shop, user)."""
    __tablename__ = "shop_staff"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "user_id", name="uq_shop_staff_shop_user"),
        db.Index("ix_shop_staff_user", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    role = db.Column(db.String(16), nullable=False, default="barista")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "full_name": self.user.full_name if self.user else None,
        }
