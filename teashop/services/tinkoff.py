# teashop/services/tinkoff.py
"""
Клиент платёжного шлюза Tinkoff (API v2).

Подпись запроса (Token): берём скалярные поля верхнего уровня без Token,
добавляем Password, сортируем по ключу, склеиваем значения и считаем SHA-256.
Вложенные объекты (Receipt, DATA) в подписи не участвуют.
"""
import hashlib
import hmac
import html
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

import requests

from teashop import config
from teashop.models.order import Order

logger = logging.getLogger(__name__)

RECEIPT_NAME_MAX = 128


class TinkoffError(Exception):
    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class ReceiptMismatchError(TinkoffError):
    """Позиции чека не сходятся с суммой платежа."""


@dataclass
class InitResult:
    payment_id: str
    payment_url: str
    status: str


def to_kopecks(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def distribute_discount(line_amounts: List[int], total: int) -> List[int]:
    """
    Раскладывает скидку по позициям пропорционально их сумме.
    В каждой позиции остаётся минимум 1 копейка, остаток округления уходит в последнюю.
    """
    if not line_amounts:
        raise ReceiptMismatchError("В чеке нет позиций")
    if total < len(line_amounts):
        raise ReceiptMismatchError(
            f"Сумма {total} коп. меньше числа позиций ({len(line_amounts)})"
        )

    subtotal = sum(line_amounts)
    discount = subtotal - total
    if discount <= 0:
        # скидки нет (или сумма выросла): разница целиком в последнюю позицию
        return line_amounts[:-1] + [line_amounts[-1] - discount]

    result = []
    for amount in line_amounts[:-1]:
        share = amount * discount // subtotal
        result.append(max(1, amount - share))

    last = total - sum(result)
    if last < 1:
        # последней позиции не хватило — добираем с самых крупных
        deficit = 1 - last
        for idx in sorted(range(len(result)), key=lambda i: result[i], reverse=True):
            take = min(deficit, result[idx] - 1)
            result[idx] -= take
            deficit -= take
            if not deficit:
                break
        last = total - sum(result)
    result.append(last)

    if sum(result) != total or min(result) < 1:
        raise ReceiptMismatchError(f"Не удалось разложить {total} коп. по позициям чека")
    return result


def _token_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class TinkoffClient:
    def __init__(self, terminal_key: str, password: str,
                 api_url: str = config.TINKOFF_API_URL,
                 timeout: float = config.HTTP_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.terminal_key = terminal_key
        # в секретах хостинга & иногда приходит как &amp;
        self.password = html.unescape(password or "")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.terminal_key and self.password)

    def make_token(self, params: dict) -> str:
        token_params = {
            k: v for k, v in params.items()
            if k != "Token" and v is not None and not isinstance(v, (dict, list))
        }
        token_params["Password"] = self.password
        joined = "".join(_token_value(token_params[k]) for k in sorted(token_params))
        return hashlib.sha256(joined.encode("utf-8")).hexdigest()

    def build_receipt(self, order: Order) -> dict:
        items = order.get_items()
        total = to_kopecks(order.total)
        lines = [to_kopecks(Decimal(str(i["pricePerGram"])) * int(i["quantity"])) for i in items]
        amounts = distribute_discount(lines, total)

        receipt_items = []
        for item, amount in zip(items, amounts):
            receipt_items.append({
                "Name": f"{item['name']} ({item['quantity']} г)"[:RECEIPT_NAME_MAX],
                "Price": amount,
                "Quantity": 1,
                "Amount": amount,
                "Tax": config.TINKOFF_TAX,
            })
        return {
            "Email": order.email,
            "Phone": order.phone,
            "Taxation": config.TINKOFF_TAXATION,
            "Items": receipt_items,
        }

    def _post(self, method: str, params: dict) -> dict:
        if not self.configured:
            raise TinkoffError("Tinkoff credentials not configured")

        payload = dict(params, TerminalKey=self.terminal_key)
        payload["Token"] = self.make_token(payload)
        try:
            resp = self.session.post(f"{self.api_url}/{method}", json=payload, timeout=self.timeout)
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise TinkoffError(f"Tinkoff {method}: {e}") from e

        if not data.get("Success"):
            logger.error("Tinkoff %s отказал: %s (%s) %s", method,
                         data.get("Message"), data.get("ErrorCode"), data.get("Details"))
            raise TinkoffError(
                data.get("Message") or f"Tinkoff API error: {data.get('ErrorCode')}",
                error_code=data.get("ErrorCode"),
            )
        return data

    def init(self, order: Order, notification_url: str,
             success_url: Optional[str] = None, fail_url: Optional[str] = None) -> InitResult:
        params = {
            "Amount": to_kopecks(order.total),
            "OrderId": str(order.id),
            "Description": f"Заказ #{order.id}",
            "DATA": {"Email": order.email, "Phone": order.phone},
            # чек собираем до запроса: несходящийся чек сразу даёт ошибку
            "Receipt": self.build_receipt(order),
            "NotificationURL": notification_url,
        }
        if success_url:
            params["SuccessURL"] = success_url
        if fail_url:
            params["FailURL"] = fail_url

        data = self._post("Init", params)
        logger.info("Tinkoff Init: заказ #%s, PaymentId=%s", order.id, data.get("PaymentId"))
        return InitResult(
            payment_id=str(data["PaymentId"]),
            payment_url=data.get("PaymentURL", ""),
            status=data.get("Status", "NEW"),
        )

    def get_state(self, payment_id: str) -> dict:
        return self._post("GetState", {"PaymentId": payment_id})

    def verify_notification(self, notification: dict) -> bool:
        token = notification.get("Token")
        if not token or not self.password:
            return False
        expected = self.make_token(notification)
        return hmac.compare_digest(expected, str(token))

    @staticmethod
    def extract_receipt_url(payload) -> Optional[str]:
        """Ищет ссылку на фискальный чек в ответе или уведомлении шлюза."""
        if not isinstance(payload, dict):
            return None
        for key in ("ReceiptUrl", "ReceiptURL", "Url"):
            value = payload.get(key)
            if isinstance(value, str) and value.startswith("http"):
                return value
        nested = payload.get("Receipt")
        if isinstance(nested, dict):
            url = TinkoffClient.extract_receipt_url(nested)
            if url:
                return url
        for receipt in payload.get("Receipts") or []:
            url = TinkoffClient.extract_receipt_url(receipt)
            if url:
                return url
        return None

    @staticmethod
    def notification_success_response() -> str:
        return "OK"


_client: Optional[TinkoffClient] = None


def get_tinkoff_client() -> TinkoffClient:
    global _client
    if _client is None:
        if not (config.TINKOFF_TERMINAL_KEY and config.TINKOFF_SECRET_KEY):
            logger.warning("Tinkoff не настроен: платежи будут недоступны")
        _client = TinkoffClient(config.TINKOFF_TERMINAL_KEY, config.TINKOFF_SECRET_KEY)
    return _client
