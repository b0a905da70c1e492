from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from shopcore.db import get_db
from shopcore.schemas.order_schema import (
    BatchStatusUpdateIn,
    CancelOrderIn,
    ConfirmPaymentIn,
    CreateOrderIn,
    CreateOrderRequest,
    EligibilityOut,
    RefundRequestIn,
    StatusUpdateIn,
)
from shopcore.services.order_service import OrderService

router = APIRouter(tags=["orders"])


@router.post("", summary="Create order (checkout)")
def create_order(
    payload: CreateOrderIn,
    db: Session = Depends(get_db),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
):
    request = CreateOrderRequest(**payload.model_dump(), idempotency_key=idempotency_key)
    result = OrderService(db).create_order(request)
    if not result.success:
        raise HTTPException(status_code=400, detail={"message": result.message, "errors": result.errors})
    return result


@router.get("/statistics", summary="Order statistics")
def statistics(
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    return OrderService(db).get_order_statistics(from_date, to_date)


@router.get("/user/{user_id}", summary="List a user's orders")
def user_orders(
    user_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return OrderService(db).get_user_orders(user_id, page, page_size, status)


@router.post("/batch-status", summary="Move several orders to one status")
def batch_status(payload: BatchStatusUpdateIn, db: Session = Depends(get_db)):
    updated = OrderService(db).batch_update_order_status(
        payload.order_ids, payload.status, payload.updated_by
    )
    return {"requested": len(payload.order_ids), "updated": updated}


@router.get("/{order_id}", summary="Order details")
def order_details(order_id: int, user_id: Optional[int] = None, db: Session = Depends(get_db)):
    details = OrderService(db).get_order_details(order_id, user_id)
    if details is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return details


@router.post("/{order_id}/status", summary="Advance order status")
def update_status(order_id: int, payload: StatusUpdateIn, db: Session = Depends(get_db)):
    if not OrderService(db).update_order_status(order_id, payload.status, payload.updated_by):
        raise HTTPException(status_code=400, detail="Status update rejected")
    return {"order_id": order_id, "status": payload.status}


@router.post("/{order_id}/cancel", summary="Cancel order")
def cancel(order_id: int, payload: CancelOrderIn, db: Session = Depends(get_db)):
    svc = OrderService(db)
    if not svc.cancel_order(order_id, payload.reason, payload.cancelled_by):
        _, reason = svc.can_cancel_order(order_id)
        raise HTTPException(status_code=400, detail=reason)
    return {"order_id": order_id, "status": "Cancelled"}


@router.get("/{order_id}/can-cancel", response_model=EligibilityOut)
def can_cancel(order_id: int, db: Session = Depends(get_db)):
    allowed, reason = OrderService(db).can_cancel_order(order_id)
    return EligibilityOut(allowed=allowed, reason=reason)


@router.get("/{order_id}/can-refund", response_model=EligibilityOut)
def can_refund(order_id: int, db: Session = Depends(get_db)):
    allowed, reason = OrderService(db).can_refund_order(order_id)
    return EligibilityOut(allowed=allowed, reason=reason)


@router.post("/{order_id}/refund", summary="Request refund")
def refund(order_id: int, payload: RefundRequestIn, db: Session = Depends(get_db)):
    svc = OrderService(db)
    if not svc.request_refund(order_id, payload.reason, payload.requested_by):
        _, reason = svc.can_refund_order(order_id)
        raise HTTPException(status_code=400, detail=reason)
    return {"order_id": order_id, "status": "RefundPending"}


@router.post("/{order_id}/payment", summary="Confirm payment")
def confirm_payment(order_id: int, payload: ConfirmPaymentIn, db: Session = Depends(get_db)):
    if not OrderService(db).confirm_payment(order_id, payload.payment_reference, payload.confirmed_by):
        raise HTTPException(status_code=400, detail="Payment confirmation rejected")
    return {"order_id": order_id, "payment_verified": True}
