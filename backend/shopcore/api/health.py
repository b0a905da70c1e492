from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shopcore.db import engine

router = APIRouter()


@router.get("/health", tags=["health"])
def health(request: Request):
    db_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except SQLAlchemyError:
        db_ok = False

    sweeper = getattr(request.app.state, "sweeper", None)
    return {
        "status": "ok" if db_ok else "degraded",
        "db": db_ok,
        "sweeper_running": bool(sweeper and sweeper.running),
        "last_sweep_at": sweeper.last_run_at.isoformat() if sweeper and sweeper.last_run_at else None,
    }
