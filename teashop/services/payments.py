# teashop/services/payments.py
"""Создание платежа и применение состояния платежа из шлюза к заказу."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from teashop import config
from teashop.models.order import Order
from teashop.services.orders import (
    StatusConflictError,
    can_transition,
    change_order_status,
)
from teashop.services.pricing import OrderValidationError
from teashop.services.receipts import deliver_receipt, schedule_receipt_checks
from teashop.services.sms import SmsRuClient
from teashop.services.tinkoff import InitResult, TinkoffClient, to_kopecks
from teashop.telegram.telegram_notify import notifier
from teashop.utils.enums import OrderStatus

logger = logging.getLogger(__name__)

GATEWAY_STATUS_MAP = {
    "CONFIRMED": OrderStatus.PAID.value,
    "REJECTED": OrderStatus.CANCELLED.value,
}


def map_gateway_status(gateway_status: Optional[str]) -> str:
    return GATEWAY_STATUS_MAP.get((gateway_status or "").upper(), OrderStatus.PENDING.value)


def find_order_for_notification(db: Session, payload: dict) -> Optional[Order]:
    payment_id = payload.get("PaymentId")
    if payment_id is not None:
        order = db.query(Order).filter(Order.payment_id == str(payment_id)).first()
        if order:
            return order
    try:
        return db.get(Order, int(str(payload.get("OrderId"))))
    except (TypeError, ValueError):
        return None


def init_payment(db: Session, order: Order, client: TinkoffClient) -> InitResult:
    if order.status != OrderStatus.PENDING.value:
        raise OrderValidationError("Заказ уже оплачен или отменён")

    base = config.PUBLIC_BASE_URL
    result = client.init(
        order,
        notification_url=f"{base}/api/payments/notification",
        success_url=f"{base}/payment/success?orderId={order.id}",
        fail_url=f"{base}/payment/fail?orderId={order.id}",
    )
    order.payment_id = result.payment_id
    order.payment_url = result.payment_url
    order.payment_status = result.status
    db.commit()
    return result


def apply_gateway_state(
    db: Session,
    order: Order,
    payload: dict,
    client: TinkoffClient,
    sms: SmsRuClient,
    actor: str = "gateway",
) -> Order:
    """
    Применяет уведомление или ответ GetState к заказу.
    Повторное применение того же состояния ничего не меняет.
    """
    gateway_status = payload.get("Status")
    target = map_gateway_status(gateway_status)

    payment_id = str(payload["PaymentId"]) if payload.get("PaymentId") is not None else None
    if payment_id and order.payment_id and payment_id != order.payment_id:
        # платёжных сессий по заказу несколько (например, две вкладки):
        # чеки ищем по той, что оплачена, остальные статусы не трогают заказ
        if target != OrderStatus.PAID.value:
            logger.info("Заказ #%s: статус %s по старой сессии %s пропущен (текущая %s)",
                        order.id, gateway_status, payment_id, order.payment_id)
            return order
        logger.info("Заказ #%s: оплачена сессия %s вместо %s", order.id, payment_id, order.payment_id)
        order.payment_id = payment_id
    elif payment_id and not order.payment_id:
        order.payment_id = payment_id

    if gateway_status:
        order.payment_status = gateway_status
    db.commit()

    amount = payload.get("Amount")
    if target == OrderStatus.PAID.value and amount is not None and int(amount) != to_kopecks(order.total):
        logger.warning("Заказ #%s: сумма платежа %s коп. не совпадает с итогом %s",
                       order.id, amount, order.total)

    current = order.status
    if target != OrderStatus.PENDING.value and can_transition(current, target):
        try:
            order = change_order_status(db, order.id, target, actor=actor,
                                        expected_status=current, note=f"Tinkoff: {gateway_status}")
            notifier.notify_order_status_changed(order)
        except StatusConflictError:
            logger.info("Заказ #%s: статус уже изменён параллельно", order.id)
            db.refresh(order)

    if target == OrderStatus.PAID.value and order.status in (OrderStatus.PAID.value,
                                                              OrderStatus.COMPLETED.value):
        if not order.receipt_url:
            url = client.extract_receipt_url(payload)
            if url:
                deliver_receipt(db, order, url, sms)
            else:
                schedule_receipt_checks(db, order)
    return order


def sync_payment(
    db: Session,
    order: Order,
    client: TinkoffClient,
    sms: SmsRuClient,
    actor: str = "system",
) -> Order:
    """Сверка со шлюзом, когда уведомление потерялось."""
    if not order.payment_id:
        return order
    state = client.get_state(order.payment_id)
    logger.info("Сверка заказа #%s: статус шлюза %s", order.id, state.get("Status"))
    return apply_gateway_state(db, order, state, client, sms, actor=actor)
