from sqlalchemy import Boolean, Column, DateTime, Integer, String

from shopcore.db import Base
from shopcore.utils.transactions import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(128), unique=True, nullable=False)
    email = Column(String(256), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<User id={self.id} username={self.username}>"
