import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from shopcore.db import Base
from shopcore.utils.transactions import utcnow


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    REFUND_PENDING = "RefundPending"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_order_user_idempotency_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    # plain FK; the user is looked up explicitly when needed
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_date = Column(DateTime, default=utcnow, nullable=False, index=True)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_address = Column(Text, nullable=True)
    payment_method = Column(String(64), nullable=False, default="")
    shipping_method = Column(String(32), nullable=False, default="standard")
    payment_verified = Column(Boolean, nullable=False, default=False)
    payment_reference = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)
    idempotency_key = Column(String(128), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )


class OrderItem(Base):
    """Line snapshot; unit_price is fixed at order time and never recomputed."""

    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    product_name = Column(String(256), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
