from decimal import Decimal

from sqlalchemy.orm import Session

from shopcore.repositories.cart_repo import CartRepository
from shopcore.repositories.product_repo import ProductRepository
from shopcore.repositories.user_repo import UserRepository
from shopcore.utils.transactions import smart_transaction, utcnow


class CartService:
    """Shopping cart lines, one per (user, product). Nothing is reserved until checkout."""

    def __init__(self, db: Session):
        self.db = db
        self.cart_repo = CartRepository(db)
        self.product_repo = ProductRepository(db)
        self.user_repo = UserRepository(db)

    def get_cart(self, user_id: int) -> dict:
        # prices shown here are indicative; checkout snapshots them again
        now = utcnow()
        items = []
        total = Decimal("0")
        with smart_transaction(self.db):
            for it in self.cart_repo.list_items(user_id):
                product = self.product_repo.get(it.product_id)
                unit_price = product.current_price(now) if product else Decimal("0")
                items.append(
                    {
                        "product_id": it.product_id,
                        "product_name": product.name if product else "",
                        "quantity": it.quantity,
                        "unit_price": unit_price,
                    }
                )
                total += unit_price * it.quantity
        return {"user_id": user_id, "items": items, "total": total}

    def add_item(self, user_id: int, product_id: int, qty: int) -> int:
        if qty <= 0:
            raise ValueError("Quantity must be positive")
        with smart_transaction(self.db):
            if not self.user_repo.get(user_id):
                raise ValueError("User not found")
            if not self.product_repo.get_active(product_id):
                raise ValueError("Product not found")
            item = self.cart_repo.add_or_update_item(user_id, product_id, qty)
            item_id = item.id
        return item_id

    def remove_item(self, user_id: int, product_id: int) -> bool:
        with smart_transaction(self.db):
            return self.cart_repo.remove_item(user_id, product_id)
