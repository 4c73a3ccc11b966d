# teashop/routers/cart.py
import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from teashop.db import get_db
from teashop.models.cart import CartItem
from teashop.models.catalog import Product
from teashop.models.user import User
from teashop.routers.auth import get_current_user
from teashop.schemas import CartItemIn, CartItemUpdateIn

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cart", tags=["cart"])


def _unauthorized():
    return JSONResponse({"success": False, "error": "Необходима авторизация"}, status_code=401)


def _not_found():
    return JSONResponse({"success": False, "error": "Позиция корзины не найдена"}, status_code=404)


def _line(item: CartItem) -> dict:
    price = Decimal(str(item.product.price_per_gram))
    return {
        "id": item.id,
        "productId": item.product_id,
        "name": item.product.name,
        "pricePerGram": float(price),
        "quantity": item.quantity,
        "lineTotal": float(price * item.quantity),
    }


def _cart_lines(db: Session, user_id: int) -> List[dict]:
    items = (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .all()
    )
    # снятые с продажи товары в корзине не показываем
    return [_line(i) for i in items if i.product and i.product.is_active]


def _own_item(db: Session, item_id: int, user: User) -> Optional[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.id == item_id, CartItem.user_id == user.id)
        .first()
    )


@router.get("")
def get_cart(db: Session = Depends(get_db), user: Optional[User] = Depends(get_current_user)):
    if not user:
        return _unauthorized()
    lines = _cart_lines(db, user.id)
    return {"items": lines, "total": round(sum(l["lineTotal"] for l in lines), 2)}


# ----------------------- ADD -----------------------
@router.post("")
def add_to_cart(
    data: CartItemIn,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_current_user),
):
    if not user:
        return _unauthorized()

    product = db.get(Product, data.productId)
    if not product or not product.is_active:
        return JSONResponse({"success": False, "error": "Товар не найден"}, status_code=400)

    item = (
        db.query(CartItem)
        .filter(CartItem.user_id == user.id, CartItem.product_id == product.id)
        .first()
    )
    if item:
        item.quantity += data.quantity
    else:
        item = CartItem(user_id=user.id, product_id=product.id, quantity=data.quantity)
        db.add(item)
    db.commit()
    db.refresh(item)
    return _line(item)


# ----------------------- UPDATE -----------------------
@router.patch("/{item_id}")
def update_cart_item(
    item_id: int,
    data: CartItemUpdateIn,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_current_user),
):
    if not user:
        return _unauthorized()
    item = _own_item(db, item_id, user)
    if not item:
        return _not_found()
    item.quantity = data.quantity
    db.commit()
    db.refresh(item)
    return _line(item)


# ----------------------- REMOVE -----------------------
@router.delete("/{item_id}")
def remove_cart_item(
    item_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_current_user),
):
    if not user:
        return _unauthorized()
    item = _own_item(db, item_id, user)
    if not item:
        return _not_found()
    db.delete(item)
    db.commit()
    return {"success": True}


@router.delete("")
def clear_cart(db: Session = Depends(get_db), user: Optional[User] = Depends(get_current_user)):
    if not user:
        return _unauthorized()
    removed = db.query(CartItem).filter(CartItem.user_id == user.id).delete(synchronize_session=False)
    db.commit()
    logger.info("Корзина user=%s очищена (%s позиций)", user.id, removed)
    return {"success": True}
