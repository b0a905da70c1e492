from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from shopcore.db import get_db
from shopcore.services.cart_service import CartService

router = APIRouter(prefix="/api/cart", tags=["cart"])


class AddItemIn(BaseModel):
    product_id: int
    qty: int


@router.get("/{user_id}", summary="Get cart")
def get_cart(user_id: int, db: Session = Depends(get_db)):
    return CartService(db).get_cart(user_id)


@router.post("/{user_id}/items", summary="Add item to cart")
def add_item(user_id: int, payload: AddItemIn, db: Session = Depends(get_db)):
    svc = CartService(db)
    try:
        item_id = svc.add_item(user_id, payload.product_id, payload.qty)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"item_id": item_id, "user_id": user_id}


@router.delete("/{user_id}/items/{product_id}", summary="Remove item")
def remove_item(user_id: int, product_id: int, db: Session = Depends(get_db)):
    if not CartService(db).remove_item(user_id, product_id):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return {"ok": True}
