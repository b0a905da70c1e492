from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from shopcore.models.order import Order


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: int, user_id: Optional[int] = None, for_update: bool = False) -> Optional[Order]:
        qry = self.db.query(Order).options(selectinload(Order.items)).filter(Order.id == order_id)
        if user_id is not None:
            qry = qry.filter(Order.user_id == user_id)
        if for_update:
            qry = qry.with_for_update()
        return qry.first()

    def get_by_idempotency_key(self, user_id: int, key: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(Order.user_id == user_id, Order.idempotency_key == key)
            .first()
        )

    def list_for_user(
        self, user_id: int, page: int = 1, size: int = 10, status: Optional[str] = None
    ) -> List[Order]:
        qry = self.db.query(Order).options(selectinload(Order.items)).filter(Order.user_id == user_id)
        if status:
            qry = qry.filter(Order.status == status)
        return (
            qry.order_by(Order.order_date.desc(), Order.id.desc())
            .offset((max(page, 1) - 1) * size)
            .limit(size)
            .all()
        )

    def list_between(self, from_date: datetime, to_date: datetime) -> List[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.order_date >= from_date, Order.order_date <= to_date)
            .all()
        )
