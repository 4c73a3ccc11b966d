# teashop/telegram_subscribe.py
"""Подписка операторов на служебные уведомления через long polling Telegram."""
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import requests
from sqlalchemy.orm import Session

from teashop import config
from teashop.db import SessionLocal
from teashop.models.subscriber import Subscriber

logger = logging.getLogger(__name__)

API_URL = f"https://api.telegram.org/bot{config.TELEGRAM_TOKEN}/"

AWAITING_PASSWORD = "awaiting_password"
STATE_TTL = 300  # секунд на ввод пароля


class ChatStateStore:
    """Состояние диалога по chat_id. Живёт только в памяти процесса, истекает по времени."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def set(self, chat_id, state: str, ttl: float = STATE_TTL) -> None:
        with self._lock:
            self._data[str(chat_id)] = (state, self._clock() + ttl)

    def get(self, chat_id) -> Optional[str]:
        with self._lock:
            entry = self._data.get(str(chat_id))
            if not entry:
                return None
            state, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[str(chat_id)]
                return None
            return state

    def pop(self, chat_id) -> Optional[str]:
        state = self.get(chat_id)
        with self._lock:
            self._data.pop(str(chat_id), None)
        return state


chat_states = ChatStateStore()


def save_chat(chat_id, username: Optional[str]) -> bool:
    """Сохраняем подписчика в БД. True — если подписан впервые."""
    db: Session = SessionLocal()
    try:
        exists = db.query(Subscriber).filter(Subscriber.chat_id == str(chat_id)).first()
        if exists:
            return False
        db.add(Subscriber(chat_id=str(chat_id), username=username))
        db.commit()
        logger.info("Новый подписчик chat_id=%s (@%s)", chat_id, username)
        return True
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def remove_chat(chat_id) -> bool:
    db: Session = SessionLocal()
    try:
        deleted = db.query(Subscriber).filter(Subscriber.chat_id == str(chat_id)).delete()
        db.commit()
        return bool(deleted)
    finally:
        db.close()


def handle_message(chat_id, username: Optional[str], text: Optional[str],
                   states: ChatStateStore = chat_states) -> Optional[str]:
    """Возвращает текст ответа для чата."""
    text = (text or "").strip()
    if not chat_id or not text:
        return None

    if text == "/start":
        states.set(chat_id, AWAITING_PASSWORD)
        return "Введите пароль для подписки."

    if text == "/stop":
        states.pop(chat_id)
        if remove_chat(chat_id):
            return "Вы отписаны от уведомлений."
        return "Вы не были подписаны."

    if states.get(chat_id) == AWAITING_PASSWORD:
        if config.TELEGRAM_ADMIN_PASSWORD and text == config.TELEGRAM_ADMIN_PASSWORD:
            states.pop(chat_id)
            save_chat(chat_id, username)
            return "✅ Вы подписаны на уведомления!"
        return "Неверный пароль. Попробуйте ещё раз."

    return "Отправьте /start, чтобы подписаться на уведомления."


def send_message(chat_id, text: str) -> None:
    requests.post(API_URL + "sendMessage", data={"chat_id": chat_id, "text": text},
                  timeout=config.HTTP_TIMEOUT)


def get_updates(offset=None):
    """Получаем апдейты от Telegram"""
    url = API_URL + "getUpdates"
    params = {"timeout": 30, "offset": offset}
    return requests.get(url, params=params, timeout=40).json()


def polling_loop():
    """Цикл получения сообщений от операторов"""
    last_update_id = None
    while True:
        try:
            updates = get_updates(last_update_id).get("result", [])
            for upd in updates:
                last_update_id = upd["update_id"] + 1
                msg = upd.get("message", {})
                chat = msg.get("chat", {})
                reply = handle_message(chat.get("id"), chat.get("username"), msg.get("text"))
                if reply:
                    send_message(chat.get("id"), reply)
        except Exception:
            logger.exception("Ошибка polling")
        time.sleep(2)


def start_polling():
    """Запускаем polling в фоне"""
    threading.Thread(target=polling_loop, daemon=True, name="telegram-polling").start()
