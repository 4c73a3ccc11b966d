# teashop/services/sms.py
import logging
from typing import Optional

import requests

from teashop import config
from teashop.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

SMSRU_URL = "https://sms.ru/sms/send"

SMSRU_ERRORS = {
    200: "Неправильный api_id",
    201: "Не хватает средств на лицевом счёте",
    202: "Неправильно указан номер телефона",
    203: "Нет текста сообщения",
    204: "Имя отправителя не согласовано с администрацией",
    205: "Сообщение слишком длинное",
    206: "Будет превышен или уже превышен дневной лимит",
    207: "На этот номер нельзя отправлять сообщения",
    209: "Вы добавили этот номер в стоп-лист",
    220: "Сервис временно недоступен",
    300: "Неправильный token",
    301: "Неправильный пароль",
    302: "Пользователь авторизован, но аккаунт не подтверждён",
}


class SmsError(Exception):
    pass


def _error_text(code) -> str:
    return SMSRU_ERRORS.get(code, f"Unknown error: {code}")


class SmsRuClient:
    def __init__(self, api_key: str, sender: str = config.SMSRU_SENDER,
                 timeout: float = config.HTTP_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, phone: str, text: str) -> Optional[str]:
        """Отправляет SMS, возвращает sms_id. Любая неудача — SmsError."""
        if not self.api_key:
            raise SmsError("SMS.ru API key not configured")
        try:
            to = normalize_phone(phone).lstrip("+")
        except ValueError as e:
            raise SmsError(str(e)) from e

        params = {"api_id": self.api_key, "to": to, "msg": text, "from": self.sender, "json": 1}
        try:
            resp = self.session.get(SMSRU_URL, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise SmsError(f"SMS.ru недоступен: {e}") from e

        if data.get("status_code") != 100:
            raise SmsError(f"SMS sending failed: {_error_text(data.get('status_code'))}")

        per_phone = (data.get("sms") or {}).get(to) or {}
        if per_phone and per_phone.get("status_code") != 100:
            raise SmsError(f"SMS sending failed: {_error_text(per_phone.get('status_code'))}")

        logger.info("SMS на %s отправлено, баланс %s", to, data.get("balance"))
        return per_phone.get("sms_id")


_client: Optional[SmsRuClient] = None


def get_sms_client() -> SmsRuClient:
    global _client
    if _client is None:
        _client = SmsRuClient(config.SMSRU_API_KEY)
    return _client
