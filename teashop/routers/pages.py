from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from teashop.db import get_db
from teashop.models.order import Order

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))
router = APIRouter(tags=["pages"])


# страницы, на которые Tinkoff возвращает покупателя
@router.get("/payment/success", response_class=HTMLResponse)
def payment_success(request: Request, orderId: Optional[int] = Query(None), db: Session = Depends(get_db)):
    order = db.get(Order, orderId) if orderId else None
    return templates.TemplateResponse(request, "payment/success.html", {"order": order})


@router.get("/payment/fail", response_class=HTMLResponse)
def payment_fail(request: Request, orderId: Optional[int] = Query(None)):
    return templates.TemplateResponse(request, "payment/fail.html", {"order_id": orderId})
