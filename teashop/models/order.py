# teashop/models/order.py
import json
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from teashop.db import Base
from teashop.utils.enums import OrderStatus

__all__ = ["Order"]


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    # NULL: гостевой заказ
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(64))
    address: Mapped[str] = mapped_column(String(500))
    comment: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # JSON: [{"id", "name", "pricePerGram", "quantity"}]
    items: Mapped[str] = mapped_column(Text, default="[]")

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)

    # === СТАТУС ЗАКАЗА ===
    # допустимые значения: 'pending' | 'paid' | 'cancelled' | 'completed'
    status: Mapped[str] = mapped_column(String(24), default=OrderStatus.PENDING.value, index=True)
    status_changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # === СКИДКИ ===
    used_first_order_discount: Mapped[bool] = mapped_column(Boolean, default=False)
    discount_percent: Mapped[int] = mapped_column(Integer, default=0)
    custom_discount_percent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # XP за заказ начисляется ровно один раз
    xp_awarded: Mapped[bool] = mapped_column(Boolean, default=False)

    # === ОПЛАТА ===
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    payment_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    def get_items(self) -> List[dict]:
        return json.loads(self.items or "[]")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "createdAt": self.created_at.strftime("%Y-%m-%d %H:%M") if self.created_at else None,
            "userId": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "comment": self.comment,
            "items": self.get_items(),
            "subtotal": float(self.subtotal or 0),
            "total": float(self.total or 0),
            "status": self.status,
            "usedFirstOrderDiscount": self.used_first_order_discount,
            "discountPercent": self.discount_percent,
            "customDiscountPercent": self.custom_discount_percent,
            "paymentId": self.payment_id,
            "paymentStatus": self.payment_status,
            "paymentUrl": self.payment_url,
            "receiptUrl": self.receipt_url,
        }
