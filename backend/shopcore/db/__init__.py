import importlib
import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from shopcore.config import settings
from shopcore.utils.logs import get_logger

log = get_logger("db")

Base = declarative_base()

# every module that declares tables; init_db imports them so metadata is complete
MODEL_MODULES = [
    "shopcore.models.user",
    "shopcore.models.product",
    "shopcore.models.cart_item",
    "shopcore.models.stock_reservation",
    "shopcore.models.stock_movement",
    "shopcore.models.order",
    "shopcore.models.operation_log",
]


def make_engine(url: str):
    """
    Build an engine for `url`.

    SQLite is only meant for development and tests, but checkout runs
    reservations from several threads, so file databases get:
      - check_same_thread disabled and a generous busy timeout
      - WAL journaling so readers never block the writer
      - explicit BEGIN IMMEDIATE, since pysqlite otherwise defers it and
        breaks SAVEPOINTs; taking the write lock up front also makes
        concurrent writers wait on the busy timeout instead of failing when
        their read snapshot went stale
    """
    if not url.startswith("sqlite"):
        return create_engine(url, future=True, echo=False, pool_pre_ping=True)

    engine = create_engine(
        url,
        future=True,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            if ":memory:" not in url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False)


def init_db(bind=None, reset: bool = None):
    """
    Create all tables on `bind` (the module engine by default).

    When `reset` is not given, RESET_DB=1/true/yes in the environment drops
    the schema first.
    """
    bind = bind if bind is not None else engine
    if reset is None:
        reset = os.environ.get("RESET_DB", "false").lower() in ("1", "true", "yes")

    for mod in MODEL_MODULES:
        importlib.import_module(mod)

    if reset:
        log.warning("Resetting database schema (RESET_DB set)")
        Base.metadata.drop_all(bind=bind)
    Base.metadata.create_all(bind=bind)
    log.info("Database initialized (%d tables)", len(Base.metadata.tables))


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
