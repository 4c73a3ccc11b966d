# teashop/services/orders.py
"""
Жизненный цикл заказа.

    pending -> paid -> completed
    pending -> cancelled, paid -> cancelled, pending -> completed

cancelled и completed конечные. Смена статуса делается одним условным UPDATE
(WHERE status = <что видел актор>), поэтому из двух одновременных
администраторов XP начислит только тот, чей UPDATE прошёл.
"""
import json
import logging
import math
from datetime import datetime
from typing import Dict, Optional, Set

from sqlalchemy.orm import Session

from teashop.models.cart import CartItem
from teashop.models.order import Order
from teashop.models.order_status_log import OrderStatusLog
from teashop.models.user import User
from teashop.services.pricing import calculate_order_total
from teashop.utils.enums import OrderStatus
from teashop.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {
    OrderStatus.PENDING.value: {
        OrderStatus.PAID.value,
        OrderStatus.CANCELLED.value,
        OrderStatus.COMPLETED.value,
    },
    OrderStatus.PAID.value: {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value},
    OrderStatus.CANCELLED.value: set(),
    OrderStatus.COMPLETED.value: set(),
}

# статусы, в которых покупателю положены XP
XP_STATUSES = {OrderStatus.PAID.value, OrderStatus.COMPLETED.value}


class OrderNotFoundError(Exception):
    pass


class StatusTransitionError(Exception):
    """Переход не предусмотрен."""


class StatusConflictError(Exception):
    """Статус уже изменил кто-то другой."""


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def _clean_phone(phone: str) -> str:
    try:
        return normalize_phone(phone)
    except ValueError:
        return phone.strip()


def create_order(db: Session, data: dict, user: Optional[User]) -> Order:
    """Создаёт заказ в статусе pending. Итог всегда считается на сервере."""
    pricing = calculate_order_total(db, data["items"], user, client_total=data.get("total"))

    if user is not None and pricing.used_first_order_discount:
        # списываем флаг условно: параллельный заказ мог успеть раньше
        claimed = (
            db.query(User)
            .filter(User.id == user.id, User.first_order_discount_used.is_(False))
            .update({User.first_order_discount_used: True}, synchronize_session=False)
        )
        if not claimed:
            logger.info("Скидка на первый заказ user=%s уже использована, пересчитываем", user.id)
            db.refresh(user)
            pricing = calculate_order_total(db, data["items"], user, client_total=data.get("total"))

    if user is not None and pricing.custom_discount_percent:
        db.query(User).filter(User.id == user.id).update(
            {User.custom_discount: None}, synchronize_session=False
        )

    order = Order(
        user_id=user.id if user else None,
        name=data["name"].strip(),
        email=data["email"].strip(),
        phone=_clean_phone(data["phone"]),
        address=data["address"].strip(),
        comment=(data.get("comment") or "").strip() or None,
        items=json.dumps(pricing.lines, ensure_ascii=False),
        subtotal=pricing.subtotal,
        total=pricing.total,
        status=OrderStatus.PENDING.value,
        used_first_order_discount=pricing.used_first_order_discount,
        discount_percent=pricing.discount_percent,
        custom_discount_percent=pricing.custom_discount_percent,
    )
    db.add(order)
    db.flush()
    db.add(OrderStatusLog(order_id=order.id, old_status=None, new_status=order.status,
                          actor=f"user:{user.id}" if user else "guest"))
    if user is not None:
        # заказ оформлен: серверная корзина больше не нужна
        db.query(CartItem).filter(CartItem.user_id == user.id).delete(synchronize_session=False)
    db.commit()
    db.refresh(order)

    logger.info(
        "Заказ #%s создан: подытог %s, скидка %s%%, итог %s, user=%s",
        order.id, order.subtotal, order.discount_percent, order.total, order.user_id,
    )
    return order


def award_order_xp(db: Session, order: Order) -> int:
    """Начисляет floor(total) XP владельцу заказа. Повторный вызов ничего не делает."""
    if not order.user_id:
        return 0

    claimed = (
        db.query(Order)
        .filter(Order.id == order.id, Order.xp_awarded.is_(False))
        .update({Order.xp_awarded: True}, synchronize_session=False)
    )
    if not claimed:
        return 0

    points = int(math.floor(order.total or 0))
    db.query(User).filter(User.id == order.user_id).update(
        {User.xp: User.xp + points}, synchronize_session=False
    )
    logger.info("Заказ #%s: начислено %s XP пользователю %s", order.id, points, order.user_id)
    return points


def restore_first_order_discount(db: Session, order: Order) -> bool:
    if not (order.user_id and order.used_first_order_discount):
        return False
    db.query(User).filter(User.id == order.user_id).update(
        {User.first_order_discount_used: False}, synchronize_session=False
    )
    logger.info("Заказ #%s отменён: скидка на первый заказ возвращена user=%s", order.id, order.user_id)
    return True


def change_order_status(
    db: Session,
    order_id: int,
    new_status: str,
    actor: str = "system",
    expected_status: Optional[str] = None,
    note: Optional[str] = None,
) -> Order:
    """
    Переводит заказ в new_status, только если сейчас он в expected_status
    (по умолчанию в том, что прочитали из БД).
    """
    order = db.get(Order, order_id)
    if not order:
        raise OrderNotFoundError(order_id)

    current = expected_status or order.status
    if new_status == current:
        raise StatusConflictError(f"Заказ #{order_id} уже в статусе {new_status}")
    if not can_transition(current, new_status):
        raise StatusTransitionError(f"Недопустимый переход {current} -> {new_status}")

    updated = (
        db.query(Order)
        .filter(Order.id == order_id, Order.status == current)
        .update(
            {Order.status: new_status, Order.status_changed_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise StatusConflictError(f"Статус заказа #{order_id} уже изменён")

    db.add(OrderStatusLog(order_id=order_id, old_status=current, new_status=new_status,
                          actor=actor, note=note))

    if new_status in XP_STATUSES:
        award_order_xp(db, order)
    elif new_status == OrderStatus.CANCELLED.value:
        restore_first_order_discount(db, order)

    db.commit()
    db.refresh(order)
    logger.info("Заказ #%s: %s -> %s (%s)", order_id, current, new_status, actor)
    return order


def save_receipt_url(db: Session, order_id: int, url: str) -> bool:
    """True, если ссылку на чек сохранил именно этот вызов."""
    saved = (
        db.query(Order)
        .filter(Order.id == order_id, Order.receipt_url.is_(None))
        .update({Order.receipt_url: url}, synchronize_session=False)
    )
    return bool(saved)
