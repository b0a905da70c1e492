from datetime import timedelta

from shopcore.adapters.notifier import Notifier
from shopcore.models.cart_item import CartItem
from shopcore.models.order import Order
from shopcore.models.product import Product
from shopcore.models.stock_movement import StockMovement
from shopcore.models.stock_reservation import StockReservation
from shopcore.utils.transactions import utcnow


class RecordingNotifier(Notifier):
    """Keeps every notification in memory; `fail=True` makes order hooks blow up."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.low_stock = []
        self.confirmed = []
        self.status_changes = []

    def notify_low_stock(self, product_name, current_stock, threshold):
        self.low_stock.append((product_name, current_stock, threshold))

    def notify_order_confirmed(self, order):
        if self.fail:
            raise RuntimeError("mail server down")
        self.confirmed.append(order.order_number)

    def notify_order_status_changed(self, order, new_status):
        if self.fail:
            raise RuntimeError("mail server down")
        self.status_changes.append((order.order_number, new_status))


# helpers below always use a short-lived session so no test keeps the
# SQLite write lock between service calls


def fill_cart(session_factory, user_id, lines):
    s = session_factory()
    try:
        for product_id, qty in lines.items():
            s.add(CartItem(user_id=user_id, product_id=product_id, quantity=qty))
        s.commit()
    finally:
        s.close()


def cart_lines(session_factory, user_id):
    s = session_factory()
    try:
        items = s.query(CartItem).filter(CartItem.user_id == user_id).all()
        return {it.product_id: it.quantity for it in items}
    finally:
        s.close()


def stock_of(session_factory, product_id):
    s = session_factory()
    try:
        return s.get(Product, product_id).stock
    finally:
        s.close()


def update_product(session_factory, product_id, **values):
    s = session_factory()
    try:
        s.query(Product).filter(Product.id == product_id).update(values)
        s.commit()
    finally:
        s.close()


def movements_of(session_factory, product_id):
    s = session_factory()
    try:
        rows = (
            s.query(StockMovement)
            .filter(StockMovement.product_id == product_id)
            .order_by(StockMovement.id)
            .all()
        )
        return [
            (m.movement_type, m.quantity, m.previous_stock, m.new_stock, m.reason) for m in rows
        ]
    finally:
        s.close()


def reservations(session_factory):
    s = session_factory()
    try:
        return {r.id: r.is_confirmed for r in s.query(StockReservation).all()}
    finally:
        s.close()


def age_reservation(session_factory, reservation_id, seconds=60, confirmed_days=None):
    """Push a reservation's expiry (and optionally its confirmation) into the past."""
    s = session_factory()
    try:
        r = s.get(StockReservation, reservation_id)
        r.expires_at = utcnow() - timedelta(seconds=seconds)
        if confirmed_days is not None:
            r.confirmed_at = utcnow() - timedelta(days=confirmed_days)
        s.commit()
    finally:
        s.close()


def update_order(session_factory, order_id, **values):
    s = session_factory()
    try:
        s.query(Order).filter(Order.id == order_id).update(values)
        s.commit()
    finally:
        s.close()


def order_row(session_factory, order_id):
    s = session_factory()
    try:
        o = s.get(Order, order_id)
        return {
            "status": o.status,
            "subtotal": o.subtotal,
            "shipping_cost": o.shipping_cost,
            "total_amount": o.total_amount,
            "payment_verified": o.payment_verified,
            "items": {i.product_id: (i.quantity, i.unit_price, i.product_name) for i in o.items},
        }
    finally:
        s.close()


def order_count(session_factory):
    s = session_factory()
    try:
        return s.query(Order).count()
    finally:
        s.close()


def insert_order(session_factory, user_id, idempotency_key, order_number="ORD-ELSEWHERE"):
    """Commit an order as a competing request would, outside the caller's session."""
    s = session_factory()
    try:
        order = Order(order_number=order_number, user_id=user_id, idempotency_key=idempotency_key)
        s.add(order)
        s.commit()
        return order.id
    finally:
        s.close()
