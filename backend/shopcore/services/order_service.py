from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from shopcore.adapters.notifier import LoggingNotifier, Notifier, safe_notify
from shopcore.config import settings
from shopcore.models.order import Order, OrderItem, OrderStatus
from shopcore.repositories.cart_repo import CartRepository
from shopcore.repositories.order_repo import OrderRepository
from shopcore.repositories.product_repo import ProductRepository
from shopcore.repositories.user_repo import UserRepository
from shopcore.schemas.order_schema import (
    CreateOrderRequest,
    DailyOrderCount,
    OrderDetails,
    OrderItemOut,
    OrderResult,
    OrderStatistics,
    OrderSummary,
    TopSellingProduct,
)
from shopcore.services.inventory_service import InventoryService
from shopcore.services.operation_log_service import OperationLogService
from shopcore.utils.logs import get_logger
from shopcore.utils.transactions import smart_transaction, utcnow

log = get_logger("order")

# update_order_status only moves forward along this path;
# Cancelled and RefundPending are reached through cancel_order / request_refund
STATUS_FLOW = [
    OrderStatus.PENDING.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]
CANCELLABLE_STATUSES = {OrderStatus.PENDING.value, OrderStatus.PROCESSING.value}

GENERIC_FAILURE = "order could not be created, please try again"


class OrderServiceException(Exception):
    pass


class OrderService:
    def __init__(
        self,
        db: Session,
        inventory: Optional[InventoryService] = None,
        notifier: Optional[Notifier] = None,
        audit: Optional[OperationLogService] = None,
    ):
        self.db = db
        self.notifier = notifier or LoggingNotifier()
        self.audit = audit or OperationLogService(db)
        self.inventory = inventory or InventoryService(db, notifier=self.notifier, audit=self.audit)
        self.users = UserRepository(db)
        self.carts = CartRepository(db)
        self.products = ProductRepository(db)
        self.orders = OrderRepository(db)

    def _now(self) -> datetime:
        return utcnow()

    def _gen_order_number(self) -> str:
        return f"ORD-{uuid4().hex[:10].upper()}"

    def _audit(self, action: str, target_id, description: str, actor_id: Optional[int] = None):
        try:
            self.audit.log("Order", action, target_id, description, actor_id=actor_id)
        except SQLAlchemyError:
            log.exception(f"could not write audit entry Order/{action} for {target_id}")

    def _release_all(self, reservation_ids: Iterable[str]):
        for rid in reservation_ids:
            if not self.inventory.release_reservation(rid):
                # the sweeper reclaims it once the TTL runs out
                log.error(f"compensating release failed for reservation {rid}")

    def _replay(self, request: CreateOrderRequest) -> Optional[OrderResult]:
        """Existing order for the request's idempotency key, if one was committed."""
        if not request.idempotency_key:
            return None
        with smart_transaction(self.db):
            existing = self.orders.get_by_idempotency_key(request.user_id, request.idempotency_key)
            if existing is None:
                return None
            log.info(f"duplicate checkout key={request.idempotency_key!r}, returning {existing.order_number}")
            return OrderResult.ok(existing.id, existing.order_number, "order already created for this request")

    def _notify_status(self, order_id: int, new_status: str):
        with smart_transaction(self.db):
            order = self.orders.get(order_id)
            if order is not None:
                safe_notify(self.notifier.notify_order_status_changed, order, new_status)

    def calculate_shipping_cost(self, subtotal: Decimal, shipping_method: str = "standard") -> Decimal:
        if subtotal >= settings.FREE_SHIPPING_THRESHOLD:
            return Decimal("0")
        fees = settings.SHIPPING_FEES
        return Decimal(fees.get((shipping_method or "standard").lower(), fees["standard"]))

    # ----------------------------------------------------------------- checkout

    def create_order(self, request: CreateOrderRequest) -> OrderResult:
        """
        Checkout the user's cart.

        Reservations are committed one by one (so concurrent checkouts see
        them) before the order exists; from then on any failure releases
        every reservation of this attempt. Order rows, confirmations and the
        cart clear commit together. Expects an idle session.
        """
        replay = self._replay(request)
        if replay is not None:
            return replay

        with smart_transaction(self.db):
            user = self.users.get(request.user_id)
            if user is None or not user.is_active:
                return OrderResult.fail("user not found or inactive")

            lines: List[Tuple[int, int]] = [
                (it.product_id, it.quantity) for it in self.carts.list_items(request.user_id)
            ]
        if not lines:
            return OrderResult.fail("cart empty")

        batch_id = uuid4().hex
        reserved: List[str] = []
        try:
            # 1) hold stock line by line; the first failure aborts the attempt
            for product_id, quantity in lines:
                availability = self.inventory.check_availability(product_id, quantity)
                name = availability.product_name or f"#{product_id}"
                if not availability.is_available:
                    self._release_all(reserved)
                    # a concurrent request with the same key may have taken the stock
                    return self._replay(request) or OrderResult.fail(
                        f"product {name} cannot be ordered", [availability.error_message]
                    )
                reservation_id = f"{batch_id}_{product_id}"
                if not self.inventory.reserve_stock(product_id, quantity, reservation_id):
                    self._release_all(reserved)
                    return self._replay(request) or OrderResult.fail(
                        f"could not reserve stock for product {name}"
                    )
                reserved.append(reservation_id)

            # 2) price snapshot, order rows, confirmations and cart clear in one transaction
            with smart_transaction(self.db):
                now = self._now()
                items = []
                subtotal = Decimal("0")
                for product_id, quantity in lines:
                    product = self.products.get(product_id)
                    if product is None:
                        raise OrderServiceException(f"product {product_id} disappeared during checkout")
                    unit_price = product.current_price(now)
                    subtotal += unit_price * quantity
                    items.append(
                        OrderItem(
                            product_id=product_id,
                            product_name=product.name,
                            quantity=quantity,
                            unit_price=unit_price,
                        )
                    )
                shipping_cost = self.calculate_shipping_cost(subtotal, request.shipping_method)

                order = Order(
                    order_number=self._gen_order_number(),
                    user_id=request.user_id,
                    order_date=now,
                    status=OrderStatus.PENDING.value,
                    subtotal=subtotal,
                    shipping_cost=shipping_cost,
                    total_amount=subtotal + shipping_cost,
                    shipping_address=request.shipping_address,
                    payment_method=request.payment_method,
                    shipping_method=request.shipping_method,
                    payment_verified=False,
                    notes=request.notes,
                    idempotency_key=request.idempotency_key,
                    items=items,
                )
                self.db.add(order)
                self.db.flush()

                for rid in reserved:
                    if not self.inventory.confirm_reservation(rid):
                        raise OrderServiceException(f"could not confirm reservation {rid}")

                self.carts.clear(request.user_id, [pid for pid, _ in lines])
                order_id, order_number = order.id, order.order_number
                total = subtotal + shipping_cost
        except IntegrityError as e:
            self._release_all(reserved)
            replay = self._replay(request)
            if replay is not None:
                return replay
            log.error(f"create_order integrity failure for user {request.user_id}: {e}")
            self._audit("CreateError", None, str(e), actor_id=request.user_id)
            return OrderResult.fail(GENERIC_FAILURE)
        except Exception as e:
            self._release_all(reserved)
            log.exception(f"create_order failed for user {request.user_id}")
            self._audit("CreateError", None, f"{type(e).__name__}: {e}", actor_id=request.user_id)
            return OrderResult.fail(GENERIC_FAILURE)

        with smart_transaction(self.db):
            order = self.orders.get(order_id)
            safe_notify(self.notifier.notify_order_confirmed, order)
        self._audit(
            "Create", order_id, f"order {order_number} created, total {total}", actor_id=request.user_id
        )
        return OrderResult.ok(order_id, order_number)

    # ------------------------------------------------------------ status changes

    def _can_advance(self, current: str, target: str) -> bool:
        if current not in STATUS_FLOW or target not in STATUS_FLOW:
            return False
        return STATUS_FLOW.index(target) > STATUS_FLOW.index(current)

    def update_order_status(
        self, order_id: int, new_status: str, updated_by: Optional[int] = None
    ) -> bool:
        try:
            target = OrderStatus(new_status).value
        except ValueError:
            log.warning(f"update_order_status: unknown status {new_status!r}")
            return False
        if target not in STATUS_FLOW:
            log.info(f"update_order_status: {target} has its own operation")
            return False

        try:
            with smart_transaction(self.db):
                order = self.orders.get(order_id, for_update=True)
                if order is None:
                    raise OrderServiceException(f"order {order_id} not found")
                old_status = order.status
                if not self._can_advance(old_status, target):
                    raise OrderServiceException(f"cannot move order {order_id} from {old_status} to {target}")
                order.status = target
                self.db.flush()
        except OrderServiceException as e:
            log.info(f"update_order_status rejected: {e}")
            return False
        except SQLAlchemyError as e:
            log.error(f"update_order_status({order_id}) failed: {e}")
            self._audit("StatusUpdateError", order_id, str(e), actor_id=updated_by)
            return False

        self._notify_status(order_id, target)
        self._audit("StatusUpdate", order_id, f"status {old_status} -> {target}", actor_id=updated_by)
        return True

    def batch_update_order_status(
        self, order_ids: List[int], new_status: str, updated_by: Optional[int] = None
    ) -> int:
        updated = sum(1 for oid in order_ids if self.update_order_status(oid, new_status, updated_by))
        self._audit(
            "BatchUpdate",
            ",".join(str(o) for o in order_ids),
            f"{updated}/{len(order_ids)} orders moved to {new_status}",
            actor_id=updated_by,
        )
        return updated

    def _cancel_check(self, order: Order) -> Tuple[bool, str]:
        if order.status == OrderStatus.SHIPPED.value:
            return False, "order has already shipped"
        if order.status == OrderStatus.DELIVERED.value:
            return False, "order has already been delivered"
        if order.status == OrderStatus.CANCELLED.value:
            return False, "order is already cancelled"
        if order.status not in CANCELLABLE_STATUSES:
            return False, f"order in status {order.status} cannot be cancelled"
        return True, "order can be cancelled"

    def can_cancel_order(self, order_id: int) -> Tuple[bool, str]:
        with smart_transaction(self.db):
            order = self.orders.get(order_id)
            if order is None:
                return False, "order not found"
            return self._cancel_check(order)

    def cancel_order(self, order_id: int, reason: str, cancelled_by: Optional[int] = None) -> bool:
        """
        Cancel a Pending/Processing order and put its units back on the shelf.
        Stock comes back as ADJUSTMENT_IN movements; the original SALE rows
        stay untouched.
        """
        try:
            with smart_transaction(self.db):
                order = self.orders.get(order_id, for_update=True)
                if order is None:
                    raise OrderServiceException(f"order {order_id} not found")
                allowed, why = self._cancel_check(order)
                if not allowed:
                    raise OrderServiceException(why)

                for item in order.items:
                    restored = self.inventory.adjust_stock(
                        item.product_id,
                        item.quantity,
                        f"order cancelled, order {order.order_number}",
                        user_id=cancelled_by,
                    )
                    if not restored:
                        raise OrderServiceException(
                            f"could not restore stock for product {item.product_id}"
                        )
                order.status = OrderStatus.CANCELLED.value
                self.db.flush()
        except OrderServiceException as e:
            log.info(f"cancel_order({order_id}) rejected: {e}")
            return False
        except SQLAlchemyError as e:
            log.error(f"cancel_order({order_id}) failed: {e}")
            self._audit("CancelError", order_id, str(e), actor_id=cancelled_by)
            return False

        self._notify_status(order_id, OrderStatus.CANCELLED.value)
        self._audit("Cancel", order_id, f"order cancelled, reason: {reason}", actor_id=cancelled_by)
        return True

    def _refund_check(self, order: Order, now: datetime) -> Tuple[bool, str]:
        if order.status != OrderStatus.DELIVERED.value:
            return False, "only delivered orders can be refunded"
        if not order.payment_verified:
            return False, "order has not been paid"
        if now - order.order_date > timedelta(days=settings.REFUND_WINDOW_DAYS):
            return False, f"refund window of {settings.REFUND_WINDOW_DAYS} days has passed"
        return True, "order can be refunded"

    def can_refund_order(self, order_id: int) -> Tuple[bool, str]:
        with smart_transaction(self.db):
            order = self.orders.get(order_id)
            if order is None:
                return False, "order not found"
            return self._refund_check(order, self._now())

    def request_refund(self, order_id: int, reason: str, requested_by: Optional[int] = None) -> bool:
        """Move an eligible Delivered order to RefundPending; paying it out happens elsewhere."""
        try:
            with smart_transaction(self.db):
                order = self.orders.get(order_id, for_update=True)
                if order is None:
                    raise OrderServiceException(f"order {order_id} not found")
                allowed, why = self._refund_check(order, self._now())
                if not allowed:
                    raise OrderServiceException(why)
                order.status = OrderStatus.REFUND_PENDING.value
                self.db.flush()
        except OrderServiceException as e:
            log.info(f"request_refund({order_id}) rejected: {e}")
            return False
        except SQLAlchemyError as e:
            log.error(f"request_refund({order_id}) failed: {e}")
            self._audit("RefundError", order_id, str(e), actor_id=requested_by)
            return False

        self._notify_status(order_id, OrderStatus.REFUND_PENDING.value)
        self._audit("RefundRequest", order_id, f"refund requested, reason: {reason}", actor_id=requested_by)
        return True

    def confirm_payment(
        self, order_id: int, payment_reference: str, confirmed_by: Optional[int] = None
    ) -> bool:
        """Mark the order paid; a Pending order moves on to Processing."""
        try:
            with smart_transaction(self.db):
                order = self.orders.get(order_id, for_update=True)
                if order is None:
                    raise OrderServiceException(f"order {order_id} not found")
                if order.status == OrderStatus.CANCELLED.value:
                    raise OrderServiceException(f"order {order_id} is cancelled")
                order.payment_verified = True
                order.payment_reference = payment_reference
                moved = order.status == OrderStatus.PENDING.value
                if moved:
                    order.status = OrderStatus.PROCESSING.value
                self.db.flush()
        except OrderServiceException as e:
            log.info(f"confirm_payment rejected: {e}")
            return False
        except SQLAlchemyError as e:
            log.error(f"confirm_payment({order_id}) failed: {e}")
            self._audit("PaymentConfirmError", order_id, str(e), actor_id=confirmed_by)
            return False

        if moved:
            self._notify_status(order_id, OrderStatus.PROCESSING.value)
        self._audit("PaymentConfirm", order_id, f"payment confirmed, reference {payment_reference}", actor_id=confirmed_by)
        return True

    # -------------------------------------------------------------------- reads

    def get_order_details(self, order_id: int, user_id: Optional[int] = None) -> Optional[OrderDetails]:
        with smart_transaction(self.db):
            order = self.orders.get(order_id, user_id=user_id)
            if order is None:
                return None
            customer = self.users.get(order.user_id)
            return OrderDetails(
                id=order.id,
                order_number=order.order_number,
                order_date=order.order_date,
                status=order.status,
                subtotal=order.subtotal,
                shipping_cost=order.shipping_cost,
                total_amount=order.total_amount,
                payment_method=order.payment_method,
                shipping_method=order.shipping_method,
                shipping_address=order.shipping_address,
                payment_verified=order.payment_verified,
                notes=order.notes,
                customer_name=customer.username if customer else "",
                customer_email=customer.email if customer else "",
                items=[
                    OrderItemOut(
                        product_id=i.product_id,
                        product_name=i.product_name or "",
                        quantity=i.quantity,
                        unit_price=i.unit_price,
                    )
                    for i in order.items
                ],
                can_cancel=self._cancel_check(order)[0],
                can_refund=self._refund_check(order, self._now())[0],
            )

    def get_user_orders(
        self, user_id: int, page: int = 1, page_size: int = 10, status: Optional[str] = None
    ) -> List[OrderSummary]:
        with smart_transaction(self.db):
            return [
                OrderSummary(
                    id=o.id,
                    order_number=o.order_number,
                    order_date=o.order_date,
                    status=o.status,
                    total_amount=o.total_amount,
                    payment_method=o.payment_method,
                    item_count=len(o.items),
                    payment_verified=o.payment_verified,
                )
                for o in self.orders.list_for_user(user_id, page=page, size=page_size, status=status)
            ]

    def get_order_statistics(
        self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> OrderStatistics:
        to_date = to_date or self._now()
        from_date = from_date or to_date - timedelta(days=30)

        with smart_transaction(self.db):
            orders = self.orders.list_between(from_date, to_date)
            stats = OrderStatistics(total_orders=len(orders))
            if not orders:
                return stats

            by_status = defaultdict(int)
            by_method = defaultdict(int)
            daily = defaultdict(lambda: [0, Decimal("0")])
            products = {}
            revenue = Decimal("0")
            for o in orders:
                total = Decimal(o.total_amount)
                revenue += total
                by_status[o.status or "unknown"] += 1
                by_method[o.payment_method or "unknown"] += 1
                day = daily[o.order_date.date()]
                day[0] += 1
                day[1] += total
                for i in o.items:
                    p = products.setdefault(i.product_id, [i.product_name or "", 0, Decimal("0")])
                    p[1] += i.quantity
                    p[2] += Decimal(i.unit_price) * i.quantity

        stats.total_revenue = revenue
        stats.average_order_value = (revenue / len(orders)).quantize(Decimal("0.01"))
        stats.orders_by_status = dict(by_status)
        stats.orders_by_payment_method = dict(by_method)
        stats.daily_trends = [
            DailyOrderCount(day=d, order_count=c, revenue=r) for d, (c, r) in sorted(daily.items())
        ]
        stats.top_products = [
            TopSellingProduct(product_id=pid, product_name=name, quantity_sold=qty, revenue=rev)
            for pid, (name, qty, rev) in sorted(products.items(), key=lambda kv: (-kv[1][1], kv[0]))[:10]
        ]
        return stats
