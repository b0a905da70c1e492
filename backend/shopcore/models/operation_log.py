from sqlalchemy import Column, DateTime, Integer, String, Text

from shopcore.db import Base
from shopcore.utils.transactions import utcnow


class OperationLog(Base):
    __tablename__ = "operation_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(Integer, nullable=True, index=True)  # None = system
    category = Column(String(64), nullable=False, index=True)  # Inventory, Order
    action = Column(String(64), nullable=False)
    target_id = Column(String(128), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
