from abc import ABC, abstractmethod
from typing import Any

from shopcore.utils.logs import get_logger

log = get_logger("notifier")


class Notifier(ABC):
    """
    Outbound notifications (low stock, order confirmation, status changes).

    Delivery is somebody else's job; every hook is fire-and-forget and the
    inventory and order services never let a notifier error escape.
    """

    @abstractmethod
    def notify_low_stock(self, product_name: str, current_stock: int, threshold: int) -> None:
        ...

    @abstractmethod
    def notify_order_confirmed(self, order: Any) -> None:
        ...

    @abstractmethod
    def notify_order_status_changed(self, order: Any, new_status: str) -> None:
        ...


class LoggingNotifier(Notifier):
    """Default notifier: writes each notification to the log."""

    def notify_low_stock(self, product_name: str, current_stock: int, threshold: int) -> None:
        log.warning(
            f"low stock: {product_name!r} has {current_stock} left (threshold {threshold})"
        )

    def notify_order_confirmed(self, order: Any) -> None:
        log.info(f"order confirmed: {order.order_number} total={order.total_amount}")

    def notify_order_status_changed(self, order: Any, new_status: str) -> None:
        log.info(f"order {order.order_number} status -> {new_status}")


def safe_notify(fn, *args, **kwargs) -> bool:
    """Call a notifier hook; log and report False instead of raising."""
    try:
        fn(*args, **kwargs)
        return True
    except Exception:
        log.exception(f"notification {getattr(fn, '__name__', fn)} failed")
        return False
