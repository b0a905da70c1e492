from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shopcore.api.health import router as health_router
from shopcore.api.routes_cart import router as cart_router
from shopcore.api.routes_inventory import router as inventory_router
from shopcore.api.routes_order import router as order_router
from shopcore.config import settings
from shopcore.db import SessionLocal, init_db
from shopcore.services.reservation_sweeper import ReservationSweeper
from shopcore.utils.logs import get_logger

log = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup; RESET_DB=1 drops the schema first (see init_db)
    init_db()

    sweeper = ReservationSweeper(SessionLocal)
    app.state.sweeper = sweeper
    if settings.SWEEPER_ENABLED:
        sweeper.start()
    else:
        log.info("reservation sweeper disabled (SWEEPER_ENABLED=false)")

    try:
        yield
    finally:
        sweeper.shutdown(wait=True)


app = FastAPI(title="Shopcore - Inventory & Orders", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(cart_router, tags=["cart"])

app.include_router(inventory_router, tags=["inventory"])

app.include_router(order_router, prefix="/api/orders", tags=["orders"])
