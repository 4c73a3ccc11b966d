from typing import Optional
from datetime import datetime
from sqlalchemy import String, Integer, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from teashop.db import Base
from teashop.utils.enums import UserRole

__all__ = ["User"]


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=UserRole.CUSTOMER.value  # по умолчанию — покупатель
    )

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, index=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False)

    # === ЛОЯЛЬНОСТЬ ===
    xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    first_order_discount_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # разовая скидка от администратора, %; сгорает после одного заказа
    custom_discount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "email": self.email,
            "phone": self.phone,
            "phoneVerified": self.phone_verified,
            "xp": self.xp,
            "firstOrderDiscountUsed": self.first_order_discount_used,
            "customDiscount": self.custom_discount,
        }
