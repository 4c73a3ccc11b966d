from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from teashop.db import get_db
from teashop.models.order import Order
from teashop.models.user import User
from teashop.schemas import DiscountUpdateIn, PhoneVerifiedIn, XpUpdateIn
from teashop.utils.phone import normalize_phone

router = APIRouter(prefix="/api/admin/users", tags=["admin-users"])


def _not_found():
    return JSONResponse({"success": False, "error": "Пользователь не найден"}, status_code=404)


# поиск по телефону
@router.get("/search")
def search_user(phone: str = Query(...), db: Session = Depends(get_db)):
    try:
        phone = normalize_phone(phone)
    except ValueError:
        return JSONResponse({"success": False, "error": "Некорректный номер телефона"}, status_code=400)

    user = db.query(User).filter(User.phone == phone).first()
    if not user:
        return _not_found()
    return user.to_public()


# заказы пользователя
@router.get("/{user_id}/orders")
def user_orders(user_id: int, db: Session = Depends(get_db)):
    rows = db.query(Order).filter(Order.user_id == user_id).order_by(Order.created_at.desc()).all()
    return [r.to_dict() for r in rows]


# ручная правка XP
@router.patch("/{user_id}/xp")
def update_xp(user_id: int, data: XpUpdateIn, db: Session = Depends(get_db)):
    user = db.get(User, user_id)
    if not user:
        return _not_found()
    user.xp = data.xp
    db.commit()
    db.refresh(user)
    return user.to_public()


# разовая скидка (null — снять)
@router.patch("/{user_id}/discount")
def update_discount(user_id: int, data: DiscountUpdateIn, db: Session = Depends(get_db)):
    user = db.get(User, user_id)
    if not user:
        return _not_found()
    user.custom_discount = data.percent
    db.commit()
    db.refresh(user)
    return user.to_public()


# подтверждение телефона вручную (открывает скидку по уровню лояльности)
@router.patch("/{user_id}/phone-verified")
def update_phone_verified(user_id: int, data: PhoneVerifiedIn, db: Session = Depends(get_db)):
    user = db.get(User, user_id)
    if not user:
        return _not_found()
    if data.verified and not user.phone:
        return JSONResponse({"success": False, "error": "У пользователя не указан телефон"}, status_code=400)
    user.phone_verified = data.verified
    db.commit()
    db.refresh(user)
    return user.to_public()
