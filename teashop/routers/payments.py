import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from teashop.db import get_db
from teashop.models.order import Order
from teashop.schemas import PaymentInitIn
from teashop.services.payments import (
    apply_gateway_state,
    find_order_for_notification,
    init_payment,
    sync_payment,
)
from teashop.services.pricing import OrderValidationError
from teashop.services.sms import SmsRuClient, get_sms_client
from teashop.services.tinkoff import TinkoffClient, TinkoffError, get_tinkoff_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/payments", tags=["payments"])


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _owner_error(request: Request, order: Optional[Order]) -> Optional[JSONResponse]:
    """Авторизованный — только свои заказы, гость — только гостевые."""
    if not order:
        return _error("Заказ не найден", 404)
    user_id = request.session.get("user_id")
    if order.user_id is None:
        if user_id:
            return _error("Нет доступа к заказу", 403)
        return None
    if not user_id:
        return _error("Необходима авторизация", 401)
    if int(user_id) != order.user_id:
        return _error("Нет доступа к заказу", 403)
    return None


@router.post("/init")
def payment_init(
    data: PaymentInitIn,
    request: Request,
    db: Session = Depends(get_db),
    client: TinkoffClient = Depends(get_tinkoff_client),
):
    order = db.get(Order, data.orderId)
    denied = _owner_error(request, order)
    if denied:
        return denied

    try:
        result = init_payment(db, order, client)
    except OrderValidationError as e:
        return _error(str(e), 400)
    except TinkoffError:
        logger.exception("Заказ #%s: не удалось создать платёж", order.id)
        return _error("Не удалось создать платёж. Попробуйте позже.", 502)

    return {"success": True, "paymentUrl": result.payment_url, "paymentId": result.payment_id}


@router.post("/notification")
def payment_notification(
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    client: TinkoffClient = Depends(get_tinkoff_client),
    sms: SmsRuClient = Depends(get_sms_client),
):
    # синхронный обработчик: FastAPI выполняет его в пуле потоков
    if not isinstance(payload, dict):
        return PlainTextResponse("Bad request", status_code=400)

    if not client.verify_notification(payload):
        logger.error("Уведомление Tinkoff с неверной подписью: OrderId=%s PaymentId=%s",
                     payload.get("OrderId"), payload.get("PaymentId"))
        return PlainTextResponse("Invalid token", status_code=400)

    order = find_order_for_notification(db, payload)
    if not order:
        logger.warning("Уведомление Tinkoff для неизвестного заказа: OrderId=%s PaymentId=%s",
                       payload.get("OrderId"), payload.get("PaymentId"))
        return PlainTextResponse(client.notification_success_response())

    logger.info("Уведомление Tinkoff: заказ #%s, статус %s", order.id, payload.get("Status"))
    apply_gateway_state(db, order, payload, client, sms, actor="gateway")
    return PlainTextResponse(client.notification_success_response())


@router.get("/check/{order_id}")
def payment_check(
    order_id: int,
    request: Request,
    db: Session = Depends(get_db),
    client: TinkoffClient = Depends(get_tinkoff_client),
    sms: SmsRuClient = Depends(get_sms_client),
):
    order = db.get(Order, order_id)
    denied = _owner_error(request, order)
    if denied:
        return denied

    try:
        order = sync_payment(db, order, client, sms, actor="check")
    except TinkoffError:
        logger.exception("Заказ #%s: не удалось проверить платёж", order.id)
        return _error("Не удалось проверить платёж. Попробуйте позже.", 502)

    return {
        "success": True,
        "orderId": order.id,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "receiptUrl": order.receipt_url,
    }
