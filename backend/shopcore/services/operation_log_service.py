from typing import Optional

from sqlalchemy.orm import Session

from shopcore.models.operation_log import OperationLog
from shopcore.utils.logs import get_logger
from shopcore.utils.transactions import smart_transaction

log = get_logger("audit")


class OperationLogService:
    """
    Audit sink for (category, action, target_id, description) tuples.

    The acting user is passed explicitly; None means the system acted.
    Entries join the caller's transaction when one is open, so a rolled-back
    operation leaves no audit row behind (the log line still records it).
    """

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        category: str,
        action: str,
        target_id: Optional[object] = None,
        description: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> OperationLog:
        target = str(target_id) if target_id is not None else None
        entry = OperationLog(
            actor_id=actor_id,
            category=category,
            action=action,
            target_id=target,
            description=description,
        )
        with smart_transaction(self.db):
            self.db.add(entry)
        log.info(f"{category}/{action} target={target} actor={actor_id}: {description}")
        return entry

    def recent(self, category: Optional[str] = None, limit: int = 100):
        with smart_transaction(self.db):
            qry = self.db.query(OperationLog)
            if category:
                qry = qry.filter(OperationLog.category == category)
            return qry.order_by(OperationLog.id.desc()).limit(limit).all()
