from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from shopcore.db import Base
from shopcore.utils.transactions import utcnow


class StockReservation(Base):
    """
    Time-limited hold against a product's on-hand stock.

    The id is supplied by the caller and doubles as an idempotency key.
    A hold counts toward reserved stock only while it is unconfirmed and
    not past `expires_at`; once confirmed its quantity lives in the ledger.
    """

    __tablename__ = "stock_reservations"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),)

    id = Column(String(64), primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    is_confirmed = Column(Boolean, default=False, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return not self.is_confirmed and not self.is_expired(now)

    def __repr__(self):
        return f"<StockReservation id={self.id} product={self.product_id} qty={self.quantity}>"
