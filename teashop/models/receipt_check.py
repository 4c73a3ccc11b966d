# teashop/models/receipt_check.py
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from teashop.db import Base
from teashop.utils.enums import ReceiptCheckState

__all__ = ["ReceiptCheck"]


class ReceiptCheck(Base):
    """Запланированная проверка фискального чека. Переживает перезапуск процесса."""

    __tablename__ = "receipt_checks"
    # одна серия проверок на заказ: параллельное планирование упрётся в ограничение
    __table_args__ = (UniqueConstraint("order_id", "attempt", name="uq_receipt_checks_order_attempt"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)

    attempt: Mapped[int] = mapped_column(Integer)  # 1..N
    due_at: Mapped[datetime] = mapped_column(DateTime)
    state: Mapped[str] = mapped_column(String(16), default=ReceiptCheckState.PENDING.value)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    order = relationship("Order")


Index("ix_receipt_checks_state_due", ReceiptCheck.state, ReceiptCheck.due_at)
