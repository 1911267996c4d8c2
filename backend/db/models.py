"""
Storefront Database Models

Tables:
  Catalog:
  1. products                - Catalog items (stock is a cached aggregate)
  2. product_variants        - Color/style variants owning the real stock

  Orders:
  3. orders                  - Customer orders, correlated to the gateway by external_reference
  4. order_items             - Line items with a label snapshot of the variant
  5. order_status_changes    - Audit trail of every status transition

  Notifications:
  6. stock_notifications     - "Notify me when restocked" subscriptions

  Launch:
  7. early_access_emails     - Pre-launch mailing list, one row per address
  8. early_access_variants   - Variants (and quantities) an address intends to buy
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base

BATCH_STATUSES = ("available", "low", "soldout", "preorder")
ORDER_STATUSES = ("pending", "confirmed", "shipped", "delivered", "cancelled")
STATUS_SOURCES = ("payment_event", "admin", "checkout")


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# ─── 1. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    unit_price = Column(Float, nullable=False)
    stock = Column(Integer, nullable=False, default=0)  # Σ active variant stock
    batch_status = Column(String(20), nullable=False, default="available")
    estimated_restock_days = Column(Integer)
    estimated_preorder_delivery_days = Column(Integer)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("unit_price >= 0", name="ck_product_price_non_negative"),
        CheckConstraint(_in_clause("batch_status", BATCH_STATUSES), name="ck_product_batch_status"),
    )

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.sort_order",
    )


# ─── 2. Product Variants ────────────────────────────────────────────────────


class ProductVariant(Base):
    __tablename__ = "product_variants"

    variant_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id", ondelete="CASCADE"), nullable=False)
    label = Column(String(120), nullable=False)  # e.g. "Black & Green"
    image_url = Column(String(512), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    batch_status = Column(String(20), nullable=False, default="available")
    estimated_restock_days = Column(Integer, default=10)
    estimated_preorder_delivery_days = Column(Integer, default=10)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_product_variants_product", "product_id"),
        Index("ix_product_variants_active", "is_active"),
        CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
        CheckConstraint(_in_clause("batch_status", BATCH_STATUSES), name="ck_variant_batch_status"),
    )

    product = relationship("Product", back_populates="variants")
    subscriptions = relationship(
        "StockNotification",
        back_populates="variant",
        cascade="all, delete-orphan",
    )


# ─── 3. Orders ──────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(30), nullable=False)
    address = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False)
    zip_code = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)
    total = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    external_reference = Column(String(64), nullable=False, unique=True)
    payment_reference = Column(String(255))  # gateway preference / payment id
    is_preorder = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_orders_status", "status"),
        CheckConstraint("quantity > 0", name="ck_order_quantity_positive"),
        CheckConstraint(_in_clause("status", ORDER_STATUSES), name="ck_order_status"),
    )

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    status_changes = relationship(
        "OrderStatusChange",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusChange.changed_at",
    )


# ─── 4. Order Items ─────────────────────────────────────────────────────────


class OrderItem(Base):
    __tablename__ = "order_items"

    item_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_id = Column(GUID(), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id", ondelete="SET NULL"), nullable=True)
    variant_id = Column(GUID(), ForeignKey("product_variants.variant_id", ondelete="SET NULL"), nullable=True)
    label = Column(String(120), nullable=False)  # snapshot at order time
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    subtotal = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_order_items_order", "order_id"),
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )

    order = relationship("Order", back_populates="items")


# ─── 5. Order Status Changes ────────────────────────────────────────────────


class OrderStatusChange(Base):
    __tablename__ = "order_status_changes"

    change_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_id = Column(GUID(), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False)
    from_status = Column(String(20))
    to_status = Column(String(20), nullable=False)
    source = Column(String(20), nullable=False)
    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_order_status_changes_order", "order_id"),
        CheckConstraint(_in_clause("source", STATUS_SOURCES), name="ck_status_change_source"),
    )

    order = relationship("Order", back_populates="status_changes")


# ─── 6. Stock Notifications ─────────────────────────────────────────────────


class StockNotification(Base):
    __tablename__ = "stock_notifications"

    notification_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    variant_id = Column(
        GUID(),
        ForeignKey("product_variants.variant_id", ondelete="CASCADE"),
        nullable=False,
    )
    email = Column(String(255), nullable=False)
    variant_qty = Column(Integer, nullable=False, default=1)
    variant_label = Column(String(120), nullable=False)
    notified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    notified_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("variant_id", "email", name="uq_stock_notification_variant_email"),
        Index("ix_stock_notifications_pending", "variant_id", "notified"),
    )

    variant = relationship("ProductVariant", back_populates="subscriptions")


# ─── 7. Early Access Emails ─────────────────────────────────────────────────


class EarlyAccessEmail(Base):
    __tablename__ = "early_access_emails"

    entry_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    is_preorder = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    variants = relationship(
        "EarlyAccessVariant",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="EarlyAccessVariant.created_at",
    )


# ─── 8. Early Access Variants ───────────────────────────────────────────────


class EarlyAccessVariant(Base):
    __tablename__ = "early_access_variants"

    selection_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    entry_id = Column(GUID(), ForeignKey("early_access_emails.entry_id", ondelete="CASCADE"), nullable=False)
    variant_id = Column(GUID(), ForeignKey("product_variants.variant_id", ondelete="SET NULL"), nullable=True)
    variant_label = Column(String(120), nullable=False)  # snapshot at registration
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_early_access_variants_entry", "entry_id"),
        Index("ix_early_access_variants_variant", "variant_id"),
        CheckConstraint("quantity > 0", name="ck_early_access_quantity_positive"),
    )

    entry = relationship("EarlyAccessEmail", back_populates="variants")
