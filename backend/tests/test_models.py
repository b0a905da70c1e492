from datetime import timedelta
from decimal import Decimal

from shopcore.models.product import Product
from shopcore.models.stock_movement import StockMovement, StockMovementType
from shopcore.models.stock_reservation import StockReservation
from shopcore.utils.transactions import utcnow


def test_current_price_follows_discount_window():
    now = utcnow()
    p = Product(
        sku="P1",
        name="Pot",
        price=Decimal("500"),
        discount_price=Decimal("350"),
        discount_start=now - timedelta(hours=1),
        discount_end=now + timedelta(hours=1),
    )
    assert p.current_price(now) == Decimal("350")
    assert p.has_discount(now)
    # window bounds are inclusive
    assert p.current_price(p.discount_end) == Decimal("350")
    assert p.current_price(now + timedelta(hours=2)) == Decimal("500")
    assert not p.has_discount(now - timedelta(hours=2))

    p.discount_end = None
    assert p.current_price(now) == Decimal("500")


def test_reservation_expiry():
    now = utcnow()
    r = StockReservation(id="r", product_id=1, quantity=1, expires_at=now, is_confirmed=False)
    assert not r.is_expired(now)
    assert r.is_active(now)
    assert r.is_expired(now + timedelta(seconds=1))
    r.is_confirmed = True
    assert not r.is_active(now)


def test_movement_helpers():
    out = StockMovement(
        movement_type=StockMovementType.SALE, quantity=-3, previous_stock=5, new_stock=2
    )
    assert out.is_stock_decrease and not out.is_stock_increase
    assert out.absolute_quantity == 3
    assert out.movement_type.label == "Sale"
    assert StockMovementType.ADJUSTMENT_IN.label == "Adjustment in"
