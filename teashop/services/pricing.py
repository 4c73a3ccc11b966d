# teashop/services/pricing.py
"""
Серверный пересчёт суммы заказа.

Цены всегда берём из каталога, цену и итог от клиента не используем:
итог клиента только сверяем и пишем расхождение в лог.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy.orm import Session

from teashop import config
from teashop.models.catalog import Product
from teashop.models.user import User
from teashop.services.loyalty import get_loyalty_discount

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class OrderValidationError(Exception):
    """Ошибка оформления, текст можно показать покупателю."""


@dataclass
class PricingResult:
    lines: List[dict] = field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    discount_percent: int = 0
    used_first_order_discount: bool = False
    custom_discount_percent: Optional[int] = None
    total: Decimal = Decimal("0")

    @property
    def discount_amount(self) -> Decimal:
        return self.subtotal - self.total


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _apply_percent(amount: Decimal, percent: int) -> Decimal:
    return amount * (Decimal(100) - Decimal(percent)) / Decimal(100)


def calculate_order_total(
    db: Session,
    items: List[dict],
    user: Optional[User],
    client_total: Optional[float] = None,
) -> PricingResult:
    """
    items: [{"id": product_id, "quantity": граммы, ...}], остальные поля клиента игнорируются.
    """
    product_ids = {int(i["id"]) for i in items}
    products = db.query(Product).filter(Product.id.in_(product_ids)).all() if product_ids else []
    products_by_id = {p.id: p for p in products if p.is_active}

    result = PricingResult()
    subtotal = Decimal("0")
    for item in items:
        pid = int(item["id"])
        qty = int(item["quantity"])
        if qty <= 0:
            raise OrderValidationError("Количество должно быть больше 0")
        p = products_by_id.get(pid)
        if not p:
            logger.warning("Товар #%s не найден или скрыт, позиция исключена из заказа", pid)
            continue
        price = Decimal(str(p.price_per_gram))
        subtotal += price * qty
        result.lines.append({
            "id": p.id,
            "name": p.name,
            "pricePerGram": float(price),
            "quantity": qty,
        })

    if not result.lines:
        raise OrderValidationError("Корзина пуста")

    result.subtotal = _money(subtotal)
    total = subtotal

    if user is not None:
        # первая скидка важнее уровня лояльности, вместе не применяются
        if not user.first_order_discount_used:
            result.discount_percent = config.FIRST_ORDER_DISCOUNT_PERCENT
            result.used_first_order_discount = True
        elif user.phone_verified:
            result.discount_percent = get_loyalty_discount(user.xp or 0)

        if result.discount_percent:
            total = _apply_percent(total, result.discount_percent)

        if user.custom_discount:
            result.custom_discount_percent = int(user.custom_discount)
            total = _apply_percent(total, result.custom_discount_percent)

    if total < 0:
        total = Decimal("0")
    result.total = _money(total)

    if client_total is not None:
        diff = abs(Decimal(str(client_total)) - result.total)
        if diff > Decimal(str(config.TOTAL_MISMATCH_TOLERANCE)):
            logger.warning(
                "Итог клиента %s не совпадает с серверным %s (user=%s), сохраняем серверный",
                client_total, result.total, user.id if user else None,
            )

    if result.total < config.MIN_ORDER_TOTAL:
        raise OrderValidationError(
            f"Минимальная сумма заказа — {config.MIN_ORDER_TOTAL} ₽"
        )

    return result
