from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from shopcore.db import get_db
from shopcore.schemas.inventory_schema import BatchCheckIn, StockAdjustIn
from shopcore.services.inventory_service import InventoryService

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


@router.get("/available/{product_id}")
def available(product_id: int, quantity: int = Query(1, gt=0), db: Session = Depends(get_db)):
    result = InventoryService(db).check_availability(product_id, quantity)
    if not result.is_available and result.error_message == "product not found":
        raise HTTPException(status_code=404, detail=result.error_message)
    return result


@router.post("/batch-check")
def batch_check(payload: BatchCheckIn, db: Session = Depends(get_db)):
    """
    payload: { "items": { "1": 2, "7": 1 } }  (product id -> quantity)
    """
    return InventoryService(db).batch_check_availability(payload.items)


@router.post("/adjust")
def adjust(payload: StockAdjustIn, db: Session = Depends(get_db)):
    svc = InventoryService(db)
    if not svc.adjust_stock(
        payload.product_id, payload.adjustment, payload.reason, user_id=payload.user_id
    ):
        raise HTTPException(status_code=400, detail="Stock adjustment failed")
    return {
        "product_id": payload.product_id,
        "available": svc.get_available_stock(payload.product_id),
    }


@router.get("/low-stock")
def low_stock(threshold: Optional[int] = Query(None, ge=0), db: Session = Depends(get_db)):
    return InventoryService(db).get_low_stock_products(threshold)


@router.get("/history/{product_id}")
def history(product_id: int, from_date: Optional[datetime] = None, db: Session = Depends(get_db)):
    return InventoryService(db).get_stock_history(product_id, from_date)


@router.post("/cleanup")
def cleanup(db: Session = Depends(get_db)):
    return {"removed": InventoryService(db).cleanup_expired_reservations()}
