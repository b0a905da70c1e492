import enum

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, String

from shopcore.db import Base
from shopcore.utils.transactions import utcnow


class StockMovementType(enum.Enum):
    SALE = 1
    RETURN = 2
    ADJUSTMENT_IN = 3
    ADJUSTMENT_OUT = 4
    DAMAGE = 5
    TRANSFER = 6
    OTHER = 99

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    StockMovementType.SALE: "Sale",
    StockMovementType.RETURN: "Return",
    StockMovementType.ADJUSTMENT_IN: "Adjustment in",
    StockMovementType.ADJUSTMENT_OUT: "Adjustment out",
    StockMovementType.DAMAGE: "Damage",
    StockMovementType.TRANSFER: "Transfer",
    StockMovementType.OTHER: "Other",
}


class StockMovement(Base):
    """Append-only ledger row; written by confirm and adjust, never updated."""

    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("new_stock = previous_stock + quantity", name="ck_movement_balances"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    movement_type = Column(Enum(StockMovementType), nullable=False)
    quantity = Column(Integer, nullable=False)  # positive = in, negative = out
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reason = Column(String(500), nullable=False, default="")
    user_id = Column(Integer, nullable=True)  # acting user; None for system
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    @property
    def is_stock_increase(self) -> bool:
        return self.quantity > 0

    @property
    def is_stock_decrease(self) -> bool:
        return self.quantity < 0

    @property
    def absolute_quantity(self) -> int:
        return abs(self.quantity)
