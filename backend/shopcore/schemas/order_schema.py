from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, computed_field


class CreateOrderRequest(BaseModel):
    user_id: int
    shipping_address: str = ""
    payment_method: str = ""
    shipping_method: str = "standard"
    notes: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=128)


class OrderResult(BaseModel):
    success: bool
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    message: str = ""
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, order_id: int, order_number: str, message: str = "order created") -> "OrderResult":
        return cls(success=True, order_id=order_id, order_number=order_number, message=message)

    @classmethod
    def fail(cls, message: str, errors: Optional[List[str]] = None) -> "OrderResult":
        return cls(success=False, message=message, errors=errors or [])


class OrderItemOut(BaseModel):
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderDetails(BaseModel):
    id: int
    order_number: str
    order_date: datetime
    status: str
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    payment_method: str
    shipping_method: str
    shipping_address: Optional[str] = None
    payment_verified: bool
    notes: Optional[str] = None
    customer_name: str = ""
    customer_email: str = ""
    items: List[OrderItemOut] = Field(default_factory=list)
    can_cancel: bool = False
    can_refund: bool = False


class OrderSummary(BaseModel):
    id: int
    order_number: str
    order_date: datetime
    status: str
    total_amount: Decimal
    payment_method: str
    item_count: int
    payment_verified: bool


class DailyOrderCount(BaseModel):
    day: date
    order_count: int
    revenue: Decimal


class TopSellingProduct(BaseModel):
    product_id: int
    product_name: str
    quantity_sold: int
    revenue: Decimal


class OrderStatistics(BaseModel):
    total_orders: int = 0
    total_revenue: Decimal = Decimal("0")
    average_order_value: Decimal = Decimal("0")
    orders_by_status: Dict[str, int] = Field(default_factory=dict)
    orders_by_payment_method: Dict[str, int] = Field(default_factory=dict)
    daily_trends: List[DailyOrderCount] = Field(default_factory=list)
    top_products: List[TopSellingProduct] = Field(default_factory=list)


class EligibilityOut(BaseModel):
    allowed: bool
    reason: str


class CreateOrderIn(BaseModel):
    user_id: int
    shipping_address: str = ""
    payment_method: str = ""
    shipping_method: str = "standard"
    notes: Optional[str] = None


class StatusUpdateIn(BaseModel):
    status: str
    updated_by: Optional[int] = None


class BatchStatusUpdateIn(BaseModel):
    order_ids: List[int]
    status: str
    updated_by: int


class CancelOrderIn(BaseModel):
    reason: str = ""
    cancelled_by: Optional[int] = None


class RefundRequestIn(BaseModel):
    reason: str = ""
    requested_by: Optional[int] = None


class ConfirmPaymentIn(BaseModel):
    payment_reference: str
    confirmed_by: Optional[int] = None
