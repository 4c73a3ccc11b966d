import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from teashop.db import get_db
from teashop.models.order import Order
from teashop.models.order_status_log import OrderStatusLog
from teashop.schemas import StatusUpdateIn
from teashop.services.orders import (
    OrderNotFoundError,
    StatusConflictError,
    StatusTransitionError,
    change_order_status,
)
from teashop.services.payments import sync_payment
from teashop.services.sms import SmsRuClient, get_sms_client
from teashop.services.tinkoff import TinkoffClient, TinkoffError, get_tinkoff_client
from teashop.telegram.telegram_notify import notifier
from teashop.utils.enums import OrderStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/orders", tags=["admin-orders"])


def _actor(request: Request) -> str:
    return f"admin:{request.session.get('user_id')}"


@router.get("")
def list_orders(
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    q = db.query(Order).order_by(Order.created_at.desc(), Order.id.desc())
    if status and status != "all":
        q = q.filter(Order.status == status)
    return [r.to_dict() for r in q.limit(limit).all()]


@router.get("/{order_id}/history")
def order_history(order_id: int, db: Session = Depends(get_db)):
    rows = (
        db.query(OrderStatusLog)
        .filter(OrderStatusLog.order_id == order_id)
        .order_by(OrderStatusLog.id)
        .all()
    )
    return [
        {
            "oldStatus": r.old_status,
            "newStatus": r.new_status,
            "actor": r.actor,
            "note": r.note,
            "createdAt": r.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        }
        for r in rows
    ]


# ---------- СМЕНА СТАТУСА ----------
@router.patch("/{order_id}/status")
def change_status(
    order_id: int,
    data: StatusUpdateIn,
    request: Request,
    db: Session = Depends(get_db),
):
    order = db.get(Order, order_id)
    if not order:
        return JSONResponse({"success": False, "error": "Заказ не найден"}, status_code=404)

    try:
        # статус, который видел администратор; если его уже поменяли — 409
        expected = data.expectedStatus.value if data.expectedStatus else order.status
        order = change_order_status(
            db, order_id, data.status.value, actor=_actor(request), expected_status=expected
        )
    except StatusTransitionError as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=400)
    except (StatusConflictError, OrderNotFoundError):
        return JSONResponse(
            {"success": False, "error": "Заказ не найден или статус уже изменён"}, status_code=409
        )

    notifier.notify_order_status_changed(order)
    return order.to_dict()


# ---------- РУЧНАЯ СВЕРКА С TINKOFF ----------
@router.post("/{order_id}/sync")
def sync_order(
    order_id: int,
    request: Request,
    db: Session = Depends(get_db),
    client: TinkoffClient = Depends(get_tinkoff_client),
    sms: SmsRuClient = Depends(get_sms_client),
):
    order = db.get(Order, order_id)
    if not order:
        return JSONResponse({"success": False, "error": "Заказ не найден"}, status_code=404)
    if not order.payment_id:
        return JSONResponse({"success": False, "error": "Платёж по заказу не создавался"}, status_code=400)

    try:
        order = sync_payment(db, order, client, sms, actor=_actor(request))
    except TinkoffError as e:
        logger.exception("Сверка заказа #%s не удалась", order_id)
        return JSONResponse({"success": False, "error": f"Ошибка Tinkoff: {e}"}, status_code=502)

    return {
        "success": True,
        "order": order.to_dict(),
        "isPaid": order.status in (OrderStatus.PAID.value, OrderStatus.COMPLETED.value),
    }
