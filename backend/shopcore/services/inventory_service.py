import os
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from filelock import FileLock, Timeout
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopcore.adapters.notifier import LoggingNotifier, Notifier, safe_notify
from shopcore.config import settings
from shopcore.models.stock_movement import StockMovement, StockMovementType
from shopcore.models.stock_reservation import StockReservation
from shopcore.repositories.product_repo import ProductRepository
from shopcore.schemas.inventory_schema import (
    InventoryCheckResult,
    LowStockAlert,
    StockHistory,
    StockMovementOut,
)
from shopcore.services.operation_log_service import OperationLogService
from shopcore.utils.logs import get_logger
from shopcore.utils.transactions import run_after_commit, smart_transaction, utcnow

log = get_logger("inventory")

MAX_RESERVATION_ID_LENGTH = 64


class InventoryException(Exception):
    pass


class InsufficientStock(InventoryException):
    pass


class DuplicateReservation(InventoryException):
    pass


class InventoryService:
    """
    Available stock = on-hand stock - active reservations.

    Every public operation is one unit of work on `db` (see smart_transaction):
    with an idle session it commits before returning, inside a caller's
    transaction it runs as a SAVEPOINT and the caller owns the commit.
    Failures come back as False / structured results, never as exceptions.
    """

    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        audit: Optional[OperationLogService] = None,
        ttl_seconds: Optional[int] = None,
        low_stock_threshold: Optional[int] = None,
    ):
        self.db = db
        self.products = ProductRepository(db)
        self.notifier = notifier or LoggingNotifier()
        self.audit = audit or OperationLogService(db)
        self.ttl_seconds = ttl_seconds or settings.RESERVATION_TTL_SECONDS
        self.low_stock_threshold = (
            settings.LOW_STOCK_THRESHOLD if low_stock_threshold is None else low_stock_threshold
        )

    def _now(self) -> datetime:
        return utcnow()

    def _reserved_sum(self, product_id: int, now: datetime) -> int:
        # live aggregate; a hold counts while unconfirmed and now <= expires_at
        return int(
            self.db.query(func.coalesce(func.sum(StockReservation.quantity), 0))
            .filter(
                StockReservation.product_id == product_id,
                StockReservation.is_confirmed == False,  # noqa: E712
                StockReservation.expires_at >= now,
            )
            .scalar()
            or 0
        )

    def _product_lock(self, product_id: int) -> FileLock:
        os.makedirs(settings.LOCK_DIR, exist_ok=True)
        return FileLock(os.path.join(settings.LOCK_DIR, f"reserve_{product_id}.lock"))

    def _audit(self, action: str, target_id, description: str, actor_id: Optional[int] = None):
        try:
            self.audit.log("Inventory", action, target_id, description, actor_id=actor_id)
        except SQLAlchemyError:
            log.exception(f"could not write audit entry Inventory/{action} for {target_id}")

    def _check_low_stock(self, product_name: str, stock: int):
        if stock <= self.low_stock_threshold:
            # the caller's transaction may still roll the change back
            run_after_commit(
                self.db,
                safe_notify,
                self.notifier.notify_low_stock,
                product_name,
                stock,
                self.low_stock_threshold,
            )

    # ------------------------------------------------------------------ reads

    def _check_availability(
        self, product_id: int, requested_qty: int, lock: bool = False
    ) -> InventoryCheckResult:
        product = self.products.get(product_id, for_update=lock)
        if not product:
            return InventoryCheckResult.failure("product not found")
        if not product.is_active:
            return InventoryCheckResult.failure(
                "product is no longer available", product_name=product.name
            )

        reserved = self._reserved_sum(product_id, self._now())
        available = product.stock - reserved
        if available < requested_qty:
            return InventoryCheckResult.failure(
                f"insufficient stock, available: {available}",
                available_quantity=max(0, available),
                product_name=product.name,
            )
        return InventoryCheckResult.success(available, product_name=product.name)

    def check_availability(self, product_id: int, requested_qty: int) -> InventoryCheckResult:
        with smart_transaction(self.db):
            return self._check_availability(product_id, requested_qty)

    def batch_check_availability(self, items: Dict[int, int]) -> Dict[int, InventoryCheckResult]:
        """Independent per-product checks; nothing is held between them."""
        return {pid: self.check_availability(pid, qty) for pid, qty in items.items()}

    def get_reserved_stock(self, product_id: int) -> int:
        with smart_transaction(self.db):
            return self._reserved_sum(product_id, self._now())

    def get_available_stock(self, product_id: int) -> int:
        with smart_transaction(self.db):
            product = self.products.get(product_id)
            if not product:
                return 0
            return max(0, product.stock - self._reserved_sum(product_id, self._now()))

    def get_low_stock_products(self, threshold: Optional[int] = None) -> List[LowStockAlert]:
        threshold = self.low_stock_threshold if threshold is None else threshold
        with smart_transaction(self.db):
            now = self._now()
            alerts = [
                LowStockAlert(
                    product_id=p.id,
                    product_name=p.name,
                    current_stock=p.stock,
                    threshold=threshold,
                    reserved_stock=self._reserved_sum(p.id, now),
                    last_updated=now,
                )
                for p in self.products.list_active_low_stock(threshold)
            ]
        return sorted(alerts, key=lambda a: (a.available_stock, a.product_id))

    def get_stock_history(
        self, product_id: int, from_date: Optional[datetime] = None
    ) -> StockHistory:
        now = self._now()
        from_date = from_date or now - timedelta(days=settings.STOCK_HISTORY_DAYS)
        with smart_transaction(self.db):
            movements = (
                self.db.query(StockMovement)
                .filter(
                    StockMovement.product_id == product_id,
                    StockMovement.created_at >= from_date,
                )
                .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
                .all()
            )
            product = self.products.get(product_id)
            return StockHistory(
                product_id=product_id,
                product_name=product.name if product else "Unknown",
                current_stock=product.stock if product else 0,
                movements=[StockMovementOut.model_validate(m) for m in movements],
                from_date=from_date,
                to_date=now,
            )

    # -------------------------------------------------------------- mutations

    def reserve_stock(self, product_id: int, quantity: int, reservation_id: str) -> bool:
        """
        Place a hold of `quantity` units for TTL seconds under `reservation_id`.

        Check and insert happen under a per-product file lock and inside one
        transaction with the product row locked, so two concurrent attempts
        can never both pass the availability check. The session must be
        idle: a hold made inside a caller's transaction would only be durable
        after the lock is gone, so that case is refused.
        """
        if quantity <= 0:
            log.warning(f"reserve_stock: non-positive quantity {quantity} for product {product_id}")
            return False
        if not reservation_id or len(reservation_id) > MAX_RESERVATION_ID_LENGTH:
            log.warning(f"reserve_stock: invalid reservation id {reservation_id!r}")
            return False
        if self.db.in_transaction():
            log.warning(f"reserve_stock({reservation_id}) refused: session already has an open transaction")
            return False

        try:
            with self._product_lock(product_id).acquire(timeout=settings.LOCK_TIMEOUT_SECONDS):
                with smart_transaction(self.db):
                    availability = self._check_availability(product_id, quantity, lock=True)
                    if not availability.is_available:
                        raise InsufficientStock(availability.error_message)

                    exists = (
                        self.db.query(StockReservation.id)
                        .filter(StockReservation.id == reservation_id)
                        .first()
                    )
                    if exists:
                        raise DuplicateReservation(f"reservation id {reservation_id} already exists")

                    now = self._now()
                    self.db.add(
                        StockReservation(
                            id=reservation_id,
                            product_id=product_id,
                            quantity=quantity,
                            created_at=now,
                            expires_at=now + timedelta(seconds=self.ttl_seconds),
                            is_confirmed=False,
                        )
                    )
                    self.db.flush()
        except DuplicateReservation as e:
            # same key twice is a caller bug, not a stock problem
            log.warning(f"reserve_stock rejected: {e}")
            self._audit("ReserveDuplicate", product_id, str(e))
            return False
        except InventoryException as e:
            log.info(f"reserve_stock({reservation_id}) rejected for product {product_id}: {e}")
            return False
        except Timeout:
            log.error(f"reserve_stock({reservation_id}): lock timeout for product {product_id}")
            self._audit("ReserveError", product_id, "could not acquire reservation lock")
            return False
        except SQLAlchemyError as e:
            log.error(f"reserve_stock({reservation_id}) failed for product {product_id}: {e}")
            self._audit("ReserveError", product_id, str(e))
            return False

        self._audit("Reserve", product_id, f"reserved {quantity} units, reservation {reservation_id}")
        return True

    def confirm_reservation(self, reservation_id: str) -> bool:
        """
        Turn a hold into a hard deduction: mark it confirmed, take the units
        off on-hand stock and append a SALE movement, all in one unit of work.
        """
        try:
            with smart_transaction(self.db):
                now = self._now()
                r = (
                    self.db.query(StockReservation)
                    .filter(StockReservation.id == reservation_id)
                    .with_for_update()
                    .first()
                )
                if r is None:
                    raise InventoryException("reservation not found")
                if r.is_confirmed:
                    raise InventoryException("reservation already confirmed")
                if r.is_expired(now):
                    raise InventoryException("reservation expired")

                product = self.products.get(r.product_id, for_update=True)
                if product is None:
                    raise InventoryException("product not found")
                if product.stock < r.quantity:
                    raise InsufficientStock(
                        f"on-hand stock {product.stock} below reserved quantity {r.quantity}"
                    )

                previous = product.stock
                product.stock = previous - r.quantity
                r.is_confirmed = True
                r.confirmed_at = now
                self.db.add(
                    StockMovement(
                        product_id=r.product_id,
                        movement_type=StockMovementType.SALE,
                        quantity=-r.quantity,
                        previous_stock=previous,
                        new_stock=product.stock,
                        reason=f"order confirmed, reservation {reservation_id}",
                        created_at=now,
                    )
                )
                self.db.flush()
                product_id, quantity = r.product_id, r.quantity
                product_name, new_stock = product.name, product.stock
        except InventoryException as e:
            log.info(f"confirm_reservation({reservation_id}) rejected: {e}")
            return False
        except SQLAlchemyError as e:
            log.error(f"confirm_reservation({reservation_id}) failed: {e}")
            self._audit("ConfirmError", reservation_id, str(e))
            return False

        self._audit(
            "Confirm", product_id, f"deducted {quantity} units, reservation {reservation_id}"
        )
        self._check_low_stock(product_name, new_stock)
        return True

    def release_reservation(self, reservation_id: str) -> bool:
        """
        Drop an unconfirmed hold. Missing or already-confirmed reservations are
        a no-op that still reports success; only a store error returns False.
        """
        released = None
        try:
            with smart_transaction(self.db):
                r = (
                    self.db.query(StockReservation)
                    .filter(
                        StockReservation.id == reservation_id,
                        StockReservation.is_confirmed == False,  # noqa: E712
                    )
                    .with_for_update()
                    .first()
                )
                if r is not None:
                    released = (r.product_id, r.quantity)
                    self.db.delete(r)
                    self.db.flush()
        except SQLAlchemyError as e:
            log.error(f"release_reservation({reservation_id}) failed: {e}")
            self._audit("ReleaseError", reservation_id, str(e))
            return False

        if released:
            product_id, quantity = released
            self._audit("Release", product_id, f"released {quantity} units, reservation {reservation_id}")
        return True

    def adjust_stock(
        self,
        product_id: int,
        adjustment: int,
        reason: str,
        user_id: Optional[int] = None,
        movement_type: Optional[StockMovementType] = None,
    ) -> bool:
        """
        Change on-hand stock directly (restock, return, damage, cancellation).

        The result is clamped at 0 without failing. The movement records the
        delta actually applied, so new_stock == previous_stock + quantity
        always holds; a clamped request is noted in the reason.
        """
        if movement_type is None:
            if adjustment > 0:
                movement_type = StockMovementType.ADJUSTMENT_IN
            elif adjustment < 0:
                movement_type = StockMovementType.ADJUSTMENT_OUT
            else:
                movement_type = StockMovementType.OTHER

        try:
            with smart_transaction(self.db):
                product = self.products.get(product_id, for_update=True)
                if product is None:
                    raise InventoryException(f"product {product_id} not found")

                previous = product.stock
                new_stock = max(0, previous + adjustment)
                note = reason
                if new_stock - previous != adjustment:
                    note = f"{reason} (requested {adjustment:+d}, clamped at 0)"
                product.stock = new_stock
                self.db.add(
                    StockMovement(
                        product_id=product_id,
                        movement_type=movement_type,
                        quantity=new_stock - previous,
                        previous_stock=previous,
                        new_stock=new_stock,
                        reason=note[:500],
                        user_id=user_id,
                        created_at=self._now(),
                    )
                )
                self.db.flush()
                product_name = product.name
        except InventoryException as e:
            log.info(f"adjust_stock rejected: {e}")
            return False
        except SQLAlchemyError as e:
            log.error(f"adjust_stock({product_id}, {adjustment:+d}) failed: {e}")
            self._audit("AdjustError", product_id, str(e), actor_id=user_id)
            return False

        self._audit(
            "Adjust",
            product_id,
            f"stock adjusted {adjustment:+d} ({previous} -> {new_stock}), reason: {reason}",
            actor_id=user_id,
        )
        self._check_low_stock(product_name, new_stock)
        return True

    def cleanup_expired_reservations(self) -> int:
        """
        Delete unconfirmed holds past their expiry in a single statement.
        is_confirmed is part of the predicate, so a hold confirmed just
        before the sweep is never removed.
        """
        now = self._now()
        try:
            with smart_transaction(self.db):
                deleted = (
                    self.db.query(StockReservation)
                    .filter(
                        StockReservation.expires_at < now,
                        StockReservation.is_confirmed == False,  # noqa: E712
                    )
                    .delete(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            log.error(f"cleanup_expired_reservations failed: {e}")
            self._audit("CleanupError", None, str(e))
            return 0

        if deleted:
            self._audit("Cleanup", None, f"removed {deleted} expired reservations")
        return deleted

    def purge_confirmed_reservations(self, older_than_days: Optional[int] = None) -> int:
        """Physically remove confirmed holds; their effect already lives in the ledger."""
        days = (
            settings.CONFIRMED_RESERVATION_RETENTION_DAYS
            if older_than_days is None
            else older_than_days
        )
        cutoff = self._now() - timedelta(days=days)
        try:
            with smart_transaction(self.db):
                purged = (
                    self.db.query(StockReservation)
                    .filter(
                        StockReservation.is_confirmed == True,  # noqa: E712
                        StockReservation.confirmed_at < cutoff,
                    )
                    .delete(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            log.error(f"purge_confirmed_reservations failed: {e}")
            return 0
        if purged:
            log.info(f"purged {purged} confirmed reservations older than {days} days")
        return purged
