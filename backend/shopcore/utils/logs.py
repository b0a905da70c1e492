import logging
import sys

from shopcore.config import settings


def get_logger(name: str) -> logging.Logger:
    """
    Module logger writing to stdout as "[name] LEVEL message".
    Handlers are attached once per name, so repeated calls are cheap.
    """
    log = logging.getLogger(f"shopcore.{name}")
    log.setLevel(settings.LOG_LEVEL.upper())
    if not log.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(f"[{name.upper()}] %(levelname)s %(message)s"))
        log.addHandler(h)
    return log
