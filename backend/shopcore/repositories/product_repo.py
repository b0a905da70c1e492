from typing import List, Optional

from sqlalchemy.orm import Session

from shopcore.models.product import Product


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, product_id: int, for_update: bool = False) -> Optional[Product]:
        """
        Return product by id, active or not. With for_update the row is locked
        until the surrounding transaction ends (no-op on SQLite).
        """
        qry = self.db.query(Product).filter(Product.id == product_id)
        if for_update:
            qry = qry.with_for_update()
        return qry.first()

    def get_active(self, product_id: int) -> Optional[Product]:
        return (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.is_active == True)  # noqa: E712
            .first()
        )

    def list_active_low_stock(self, threshold: int) -> List[Product]:
        return (
            self.db.query(Product)
            .filter(Product.is_active == True, Product.stock <= threshold)  # noqa: E712
            .order_by(Product.stock, Product.id)
            .all()
        )
