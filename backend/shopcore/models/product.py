from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text

from shopcore.db import Base
from shopcore.utils.transactions import utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    discount_price = Column(Numeric(12, 2), nullable=True)
    discount_start = Column(DateTime, nullable=True)
    discount_end = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # on-hand stock; only InventoryService mutates it
    stock = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def _in_discount_window(self, now: Optional[datetime] = None) -> bool:
        if self.discount_price is None or not self.discount_start or not self.discount_end:
            return False
        now = now or utcnow()
        return self.discount_start <= now <= self.discount_end

    def current_price(self, now: Optional[datetime] = None) -> Decimal:
        """Effective unit price at `now`: the discount price inside its window, else the base price."""
        if self._in_discount_window(now):
            return Decimal(self.discount_price)
        return Decimal(self.price)

    def has_discount(self, now: Optional[datetime] = None) -> bool:
        return self._in_discount_window(now) and Decimal(self.discount_price) < Decimal(self.price)

    def __repr__(self):
        return f"<Product sku={self.sku} name={self.name}>"
