import html
import logging
from datetime import datetime
from typing import Iterable

import requests
from sqlalchemy.orm import Session

from teashop import config
from teashop.db import SessionLocal
from teashop.models.order import Order
from teashop.models.subscriber import Subscriber

logger = logging.getLogger(__name__)

STATUS_LABELS_RU = {
    "pending": "Ожидает оплаты",
    "paid": "Оплачен",
    "cancelled": "Отменён",
    "completed": "Выполнен",
}


def _esc(value) -> str:
    return html.escape(str(value if value is not None else "—"))


class TelegramNotifier:
    """Служебные уведомления всем подписанным операторам. Ошибки только логируются."""

    def __init__(self, token: str):
        self.token = token
        self.api_url = f"https://api.telegram.org/bot{self.token}/sendMessage"

    def send(self, message: str) -> int:
        """Отправить сообщение всем подписчикам, вернуть число доставленных."""
        if not self.token:
            logger.warning("TELEGRAM_TOKEN не задан, уведомление пропущено")
            return 0

        delivered = 0
        db: Session = SessionLocal()
        try:
            subscribers = db.query(Subscriber).all()
        finally:
            db.close()

        for sub in subscribers:
            try:
                resp = requests.post(self.api_url, data={
                    "chat_id": sub.chat_id,
                    "text": message,
                    "parse_mode": "HTML",
                }, timeout=config.HTTP_TIMEOUT)
                if resp.ok:
                    delivered += 1
                else:
                    logger.error("Telegram отказал chat_id=%s: %s", sub.chat_id, resp.text)
            except requests.RequestException:
                logger.exception("Ошибка при отправке в Telegram chat_id=%s", sub.chat_id)
        return delivered

    def format_items(self, items: Iterable[dict], total) -> str:
        """Форматирование списка товаров"""
        lines = []
        for item in items:
            subtotal = float(item["pricePerGram"]) * int(item["quantity"])
            lines.append(f"• {_esc(item['name'])} × {item['quantity']} г = {subtotal:.2f} ₽")
        lines.append(f"\n💰 Итого: {float(total):.2f} ₽")
        return "\n".join(lines)

    def notify_order_created(self, order: Order) -> int:
        date_str = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        msg = [
            f"🆕 <b>Новый заказ #{order.id}</b>",
            f"📅 {date_str}",
            f"👤 Клиент: {_esc(order.name)}",
            f"📧 Email: {_esc(order.email)}",
            f"📞 Телефон: {_esc(order.phone)}",
            f"🏠 Адрес: {_esc(order.address)}",
        ]
        if order.comment:
            msg.append(f"💬 Комментарий: {_esc(order.comment)}")
        if order.discount_percent or order.custom_discount_percent:
            msg.append(f"🎁 Скидка: {order.discount_percent}%"
                       + (f" + {order.custom_discount_percent}%" if order.custom_discount_percent else ""))
        msg.append("\n📦 Состав заказа:\n" + self.format_items(order.get_items(), order.total))
        return self.send("\n".join(msg))

    def notify_order_status_changed(self, order: Order) -> int:
        msg = [
            f"⚡ <b>Заказ #{order.id}</b>",
            f"📌 Новый статус: {STATUS_LABELS_RU.get(order.status, order.status)}",
            f"💰 Сумма: {float(order.total):.2f} ₽",
        ]
        return self.send("\n".join(msg))

    def notify_receipt_missing(self, order: Order, attempts: int) -> int:
        msg = [
            "<b>⚠️ ЧЕК НЕ ПОЛУЧЕН</b>",
            f"<b>Заказ:</b> #{order.id}",
            f"<b>PaymentId:</b> {_esc(order.payment_id)}",
            f"<b>Клиент:</b> {_esc(order.name)}",
            f"<b>Телефон:</b> {_esc(order.phone)}",
            f"<b>Email:</b> {_esc(order.email)}",
            f"\nШлюз не выдал чек за {attempts} попыток.",
            "<i>Найдите чек в личном кабинете Tinkoff и отправьте клиенту вручную</i>",
        ]
        return self.send("\n".join(msg))

    def notify_receipt_sms_failed(self, order_id: int, phone: str, sms_text: str) -> int:
        msg = [
            "<b>⚠️ НЕ УДАЛОСЬ ОТПРАВИТЬ SMS С ЧЕКОМ</b>",
            f"<b>Заказ:</b> #{order_id}",
            f"<b>Телефон:</b> {_esc(phone)}\n",
            f"<b>Текст сообщения:</b>\n<code>{_esc(sms_text)}</code>\n",
            "<i>Пожалуйста, отправьте сообщение клиенту вручную</i>",
        ]
        return self.send("\n".join(msg))


# глобальный экземпляр
notifier = TelegramNotifier(
    token=config.TELEGRAM_TOKEN
)
