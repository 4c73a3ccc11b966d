import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from teashop.db import get_db
from teashop.models.order import Order
from teashop.models.user import User
from teashop.routers.auth import get_current_user
from teashop.schemas import OrderIn
from teashop.services.orders import create_order
from teashop.services.pricing import OrderValidationError
from teashop.telegram.telegram_notify import notifier

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("")
def place_order(
    data: OrderIn,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_current_user),
):
    try:
        order = create_order(db, data.model_dump(), user)
    except OrderValidationError as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=400)

    notifier.notify_order_created(order)

    return JSONResponse({
        "success": True,
        "message": "Заказ успешно оформлен",
        "orderId": order.id,
        "total": float(order.total),
    }, status_code=201)


@router.get("")
def my_orders(
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_current_user),
):
    if not user:
        return JSONResponse({"success": False, "error": "Необходима авторизация"}, status_code=401)
    rows = (
        db.query(Order)
        .filter(Order.user_id == user.id)
        .order_by(Order.created_at.desc())
        .all()
    )
    return [r.to_dict() for r in rows]
