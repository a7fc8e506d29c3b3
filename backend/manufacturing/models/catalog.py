from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import decimal_str


class Unit(db.Model):
    """Unit of measure (kg, piece, litre...)."""
    __tablename__ = "units"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    identifier = db.Column(db.String(32), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Unit id={self.id} identifier={self.identifier!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "identifier": self.identifier,
        }


class Product(db.Model):
    """
    Product master data.

    Raw materials, intermediates and finished goods are all products; what
    makes a product "manufactured" is simply that some BillOfMaterials
    names it as output.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductUnitQuantity(db.Model):
    """
    Stock balance for one (product, unit) pair.

    This row is the lock target when stock is checked and then consumed:
    SELECT ... FOR UPDATE on the balance serializes concurrent consumers of
    the same stock. version_id adds optimistic locking on backends that
    ignore FOR UPDATE (SQLite).
    """
    __tablename__ = "product_unit_quantities"
    __table_args__ = (
        db.UniqueConstraint("product_id", "unit_id", name="uq_puq_product_unit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True, index=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    # Per-unit cost of goods; read fresh by the cost estimator every time
    cogs = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    # Role of this (product, unit) in manufacturing; see flag_service
    is_manufactured = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    is_raw_material = db.Column(db.Boolean, nullable=False, default=False, server_default="0")

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<ProductUnitQuantity product_id={self.product_id} unit_id={self.unit_id} "
            f"quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "quantity": decimal_str(self.quantity),
            "cogs": decimal_str(self.cogs),
            "is_manufactured": self.is_manufactured,
            "is_raw_material": self.is_raw_material,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductHistory(db.Model):
    """
    Stock ledger audit trail.

    Append-only: one row per stock adjustment, written in the same DB
    transaction as the balance change it records.
    """
    __tablename__ = "product_histories"
    __table_args__ = (
        db.Index("ix_product_histories_product_unit", "product_id", "unit_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    action = db.Column(db.String(32), nullable=False, index=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    before_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    after_quantity = db.Column(db.Numeric(18, 4), nullable=False)

    unit_price = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    total_price = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    author_id = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # Set when the adjustment was caused by a production order
    order_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "action": self.action,
            "quantity": decimal_str(self.quantity),
            "before_quantity": decimal_str(self.before_quantity),
            "after_quantity": decimal_str(self.after_quantity),
            "unit_price": decimal_str(self.unit_price),
            "total_price": decimal_str(self.total_price),
            "author_id": self.author_id,
            "description": self.description,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
        }
