from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from shopcore.models.cart_item import CartItem


class CartRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_items(self, user_id: int) -> List[CartItem]:
        return (
            self.db.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .order_by(CartItem.id)
            .all()
        )

    def get_item(self, user_id: int, product_id: int) -> Optional[CartItem]:
        return (
            self.db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .first()
        )

    def add_or_update_item(self, user_id: int, product_id: int, quantity: int) -> CartItem:
        item = self.get_item(user_id, product_id)
        if item:
            item.quantity = quantity
        else:
            item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
            self.db.add(item)
        self.db.flush()
        return item

    def remove_item(self, user_id: int, product_id: int) -> bool:
        it = self.get_item(user_id, product_id)
        if not it:
            return False
        self.db.delete(it)
        self.db.flush()
        return True

    def clear(self, user_id: int, product_ids: Iterable[int]) -> int:
        """Delete only the given lines; anything added to the cart meanwhile stays."""
        ids = list(product_ids)
        if not ids:
            return 0
        removed = (
            self.db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.product_id.in_(ids))
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return removed
