# teashop/schemas.py
from typing import List, Optional

from pydantic import BaseModel, Field

from teashop.utils.enums import OrderStatus

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class OrderItemIn(BaseModel):
    id: int
    name: str = ""
    pricePerGram: float = Field(0, ge=0)  # от клиента, не используется в расчёте
    quantity: int = Field(..., gt=0)      # граммы


class OrderIn(BaseModel):
    name: str = Field(..., min_length=2)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    phone: str = Field(..., min_length=10)
    address: str = Field(..., min_length=10)
    comment: Optional[str] = None
    items: List[OrderItemIn] = Field(..., min_length=1)
    total: float = Field(0, ge=0)


class PaymentInitIn(BaseModel):
    orderId: int


class StatusUpdateIn(BaseModel):
    status: OrderStatus
    # статус, который видел администратор; если заказ уже ушёл из него, будет 409
    expectedStatus: Optional[OrderStatus] = None


class XpUpdateIn(BaseModel):
    xp: int = Field(..., ge=0)


class DiscountUpdateIn(BaseModel):
    percent: Optional[int] = Field(None, ge=1, le=100)


class PhoneVerifiedIn(BaseModel):
    verified: bool


class CartItemIn(BaseModel):
    productId: int
    quantity: int = Field(..., gt=0)  # граммы


class CartItemUpdateIn(BaseModel):
    quantity: int = Field(..., gt=0)


class RegisterIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    phone: Optional[str] = None


class LoginIn(BaseModel):
    username: str
    password: str
