# teashop/services/receipts.py
"""
Проверка фискальных чеков.

Шлюз формирует чек через 2-10 минут после оплаты, поэтому после оплаты
в таблицу receipt_checks пишется серия проверок (сразу, +3, +4, +5 минут).
Фоновый поток забирает наступившие проверки; после перезапуска процесса
просроченные проверки выполняются на первом же проходе.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from teashop import config
from teashop.db import SessionLocal
from teashop.models.order import Order
from teashop.models.receipt_check import ReceiptCheck
from teashop.services.orders import save_receipt_url
from teashop.services.sms import SmsError, SmsRuClient, get_sms_client
from teashop.services.tinkoff import TinkoffClient, TinkoffError, get_tinkoff_client
from teashop.telegram.telegram_notify import notifier
from teashop.utils.enums import ReceiptCheckState

logger = logging.getLogger(__name__)


def receipt_sms_text(order: Order, url: str) -> str:
    return f"Спасибо за заказ #{order.id}! Ваш чек: {url}"


def deliver_receipt(db: Session, order: Order, url: str, sms: SmsRuClient) -> bool:
    """Сохраняет ссылку на чек и отправляет SMS. False — чек уже был сохранён раньше."""
    stored = save_receipt_url(db, order.id, url)
    db.commit()
    db.refresh(order)
    if not stored:
        return False

    logger.info("Заказ #%s: чек сохранён %s", order.id, url)
    text = receipt_sms_text(order, url)
    try:
        sms.send(order.phone, text)
    except SmsError:
        logger.exception("Заказ #%s: не удалось отправить SMS с чеком", order.id)
        notifier.notify_receipt_sms_failed(order.id, order.phone, text)
    return True


def _has_checks(db: Session, order_id: int) -> bool:
    return db.query(ReceiptCheck).filter(ReceiptCheck.order_id == order_id).count() > 0


def schedule_receipt_checks(db: Session, order: Order,
                            now: Optional[datetime] = None) -> List[ReceiptCheck]:
    """Планирует серию проверок чека. Серия на заказ одна; после неё чек отправляют вручную."""
    if order.receipt_url or _has_checks(db, order.id):
        return []

    now = now or datetime.utcnow()
    checks = []
    due = now
    for attempt, delay in enumerate(config.RECEIPT_RETRY_DELAYS, start=1):
        due = due + timedelta(minutes=delay)
        checks.append(ReceiptCheck(order_id=order.id, attempt=attempt, due_at=due))
    db.add_all(checks)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Заказ #%s: проверки чека уже запланированы параллельно", order.id)
        return []
    logger.info("Заказ #%s: запланировано %s проверок чека", order.id, len(checks))
    return checks


def _finish(check: ReceiptCheck, state: ReceiptCheckState, now: datetime) -> None:
    check.state = state.value
    check.finished_at = now


def _cancel_remaining(db: Session, order_id: int, now: datetime) -> int:
    return (
        db.query(ReceiptCheck)
        .filter(ReceiptCheck.order_id == order_id,
                ReceiptCheck.state == ReceiptCheckState.PENDING.value)
        .update({ReceiptCheck.state: ReceiptCheckState.CANCELLED.value,
                 ReceiptCheck.finished_at: now}, synchronize_session=False)
    )


def _claim(db: Session, check_id: int) -> bool:
    claimed = (
        db.query(ReceiptCheck)
        .filter(ReceiptCheck.id == check_id,
                ReceiptCheck.state == ReceiptCheckState.PENDING.value)
        .update({ReceiptCheck.state: ReceiptCheckState.RUNNING.value},
                synchronize_session=False)
    )
    db.commit()
    return bool(claimed)


def _run_check(db: Session, check: ReceiptCheck, client: TinkoffClient,
               sms: SmsRuClient, now: datetime) -> None:
    order = db.get(Order, check.order_id)

    if order.receipt_url:
        _finish(check, ReceiptCheckState.DONE, now)
        _cancel_remaining(db, order.id, now)
        db.commit()
        return

    url = None
    if order.payment_id:
        try:
            url = client.extract_receipt_url(client.get_state(order.payment_id))
        except TinkoffError:
            logger.exception("Заказ #%s: GetState не удался (попытка %s)", order.id, check.attempt)

    if url:
        _finish(check, ReceiptCheckState.DONE, now)
        _cancel_remaining(db, order.id, now)
        db.commit()
        deliver_receipt(db, order, url, sms)
        return

    _finish(check, ReceiptCheckState.MISSED, now)
    db.commit()
    logger.info("Заказ #%s: чека нет (попытка %s)", order.id, check.attempt)

    remaining = (
        db.query(ReceiptCheck)
        .filter(ReceiptCheck.order_id == order.id,
                ReceiptCheck.state == ReceiptCheckState.PENDING.value)
        .count()
    )
    if not remaining:
        logger.critical(
            "Заказ #%s (PaymentId=%s): чек не получен за %s попыток, нужна ручная отправка, тел. %s",
            order.id, order.payment_id, check.attempt, order.phone,
        )
        notifier.notify_receipt_missing(order, check.attempt)


def run_due_checks(db: Session, client: TinkoffClient, sms: SmsRuClient,
                   now: Optional[datetime] = None) -> int:
    """Выполняет все наступившие проверки. Возвращает число выполненных."""
    now = now or datetime.utcnow()
    due = (
        db.query(ReceiptCheck)
        .filter(ReceiptCheck.state == ReceiptCheckState.PENDING.value,
                ReceiptCheck.due_at <= now)
        .order_by(ReceiptCheck.due_at, ReceiptCheck.id)
        .all()
    )
    done = 0
    seen = set()
    for check in due:
        # за один проход не больше одной проверки на заказ
        if check.order_id in seen:
            continue
        seen.add(check.order_id)
        if not _claim(db, check.id):
            continue  # забрал другой воркер или отменили
        db.refresh(check)
        _run_check(db, check, client, sms, now)
        done += 1
    return done


def requeue_interrupted_checks(db: Session) -> int:
    """Проверки, оборванные перезапуском в состоянии running, снова становятся pending."""
    requeued = (
        db.query(ReceiptCheck)
        .filter(ReceiptCheck.state == ReceiptCheckState.RUNNING.value)
        .update({ReceiptCheck.state: ReceiptCheckState.PENDING.value}, synchronize_session=False)
    )
    db.commit()
    if requeued:
        logger.warning("Возвращено в очередь %s прерванных проверок чека", requeued)
    return requeued


_stop = threading.Event()


def receipt_worker_loop(interval: float = config.RECEIPT_WORKER_INTERVAL) -> None:
    while not _stop.is_set():
        db: Session = SessionLocal()
        try:
            run_due_checks(db, get_tinkoff_client(), get_sms_client())
        except Exception:
            db.rollback()
            logger.exception("Ошибка воркера проверки чеков")
        finally:
            db.close()
        _stop.wait(interval)


def start_receipt_worker() -> threading.Thread:
    """Запускаем воркер проверки чеков в фоне"""
    db: Session = SessionLocal()
    try:
        requeue_interrupted_checks(db)
    finally:
        db.close()

    _stop.clear()
    thread = threading.Thread(target=receipt_worker_loop, daemon=True, name="receipt-worker")
    thread.start()
    return thread


def stop_receipt_worker() -> None:
    _stop.set()
