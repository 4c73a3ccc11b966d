from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from teashop.models.user import User
from teashop.routers.auth import get_current_user
from teashop.services.loyalty import LOYALTY_LEVELS, get_loyalty_progress

router = APIRouter(prefix="/api/loyalty", tags=["loyalty"])


@router.get("/levels")
def loyalty_levels():
    return [level.to_dict() for level in LOYALTY_LEVELS]


@router.get("/me")
def my_loyalty(user: Optional[User] = Depends(get_current_user)):
    if not user:
        return JSONResponse({"success": False, "error": "Необходима авторизация"}, status_code=401)
    return {
        "progress": get_loyalty_progress(user.xp),
        "firstOrderDiscountAvailable": not user.first_order_discount_used,
        "customDiscount": user.custom_discount,
    }
