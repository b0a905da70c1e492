from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from shopcore.config import settings
from shopcore.services.inventory_service import InventoryService
from shopcore.utils.logs import get_logger
from shopcore.utils.transactions import utcnow

log = get_logger("sweeper")


class ReservationSweeper:
    """
    Periodically releases reservations that expired without being confirmed.

    One interval job on a BackgroundScheduler; runs never overlap
    (max_instances=1) and missed runs collapse into one (coalesce). Each run
    uses its own short-lived session. shutdown(wait=True) lets an in-flight
    sweep finish before returning.
    """

    JOB_ID = "cleanup_expired_reservations"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        interval_seconds: Optional[int] = None,
        retention_days: Optional[int] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.SWEEP_INTERVAL_SECONDS
        self.retention_days = retention_days
        self.scheduler = scheduler or BackgroundScheduler()
        self.last_run_at: Optional[datetime] = None
        self.last_removed = 0

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def run_once(self) -> int:
        """Run one sweep now. Returns the number of expired holds removed; never raises."""
        try:
            db = self.session_factory()
            try:
                svc = InventoryService(db)
                removed = svc.cleanup_expired_reservations()
                svc.purge_confirmed_reservations(self.retention_days)
            finally:
                db.close()
        except Exception:
            log.exception("reservation sweep failed")
            return 0

        self.last_run_at = utcnow()
        self.last_removed = removed
        if removed:
            log.info(f"released {removed} expired reservations")
        else:
            log.debug("no expired reservations")
        return removed

    def start(self):
        if self.running:
            return
        self.scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        log.info(f"reservation sweeper started, every {self.interval_seconds}s")

    def shutdown(self, wait: bool = True):
        if not self.running:
            return
        self.scheduler.shutdown(wait=wait)
        log.info("reservation sweeper stopped")
