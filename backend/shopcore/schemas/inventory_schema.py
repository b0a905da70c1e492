from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from shopcore.models.stock_movement import StockMovementType


class InventoryCheckResult(BaseModel):
    is_available: bool
    available_quantity: int = 0
    error_message: str = ""
    product_name: str = ""

    @classmethod
    def success(cls, available_quantity: int, product_name: str = "") -> "InventoryCheckResult":
        return cls(is_available=True, available_quantity=available_quantity, product_name=product_name)

    @classmethod
    def failure(
        cls, error_message: str, available_quantity: int = 0, product_name: str = ""
    ) -> "InventoryCheckResult":
        return cls(
            is_available=False,
            error_message=error_message,
            available_quantity=available_quantity,
            product_name=product_name,
        )


class LowStockAlert(BaseModel):
    product_id: int
    product_name: str
    current_stock: int
    threshold: int
    reserved_stock: int
    last_updated: datetime

    @computed_field
    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock

    @computed_field
    @property
    def urgency_level(self) -> int:
        if self.current_stock <= 0:
            return 100
        if self.current_stock <= self.threshold / 2:
            return 80
        if self.current_stock <= self.threshold:
            return 60
        return 0


class StockMovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    movement_type: StockMovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    user_id: Optional[int] = None
    created_at: datetime


class StockHistory(BaseModel):
    product_id: int
    product_name: str
    current_stock: int
    movements: List[StockMovementOut] = Field(default_factory=list)
    from_date: datetime
    to_date: datetime

    @computed_field
    @property
    def total_inbound(self) -> int:
        return sum(m.quantity for m in self.movements if m.quantity > 0)

    @computed_field
    @property
    def total_outbound(self) -> int:
        return abs(sum(m.quantity for m in self.movements if m.quantity < 0))

    @computed_field
    @property
    def net_movement(self) -> int:
        return self.total_inbound - self.total_outbound


class StockAdjustIn(BaseModel):
    product_id: int
    adjustment: int
    reason: str = Field(..., min_length=1, max_length=400)
    user_id: Optional[int] = None


class BatchCheckIn(BaseModel):
    items: Dict[int, int]
