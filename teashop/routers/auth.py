import logging
import time
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from teashop.db import get_db
from teashop.models.user import User
from teashop.schemas import LoginIn, RegisterIn
from teashop.services.loyalty import get_loyalty_progress
from teashop.utils.phone import normalize_phone
from teashop.utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])

# 🔹 Rate limit config
MAX_ATTEMPTS = 5          # максимум попыток
BLOCK_TIME = 60           # блокировка на 60 секунд
login_attempts = {}       # { "ip": {"count": int, "last": timestamp} }


def check_rate_limit(ip: str) -> bool:
    """Проверка лимита по IP"""
    now = time.time()
    data = login_attempts.get(ip)

    if not data:
        return True

    # если ещё идёт блокировка
    if data["count"] >= MAX_ATTEMPTS and now - data["last"] < BLOCK_TIME:
        return False

    return True


def add_attempt(ip: str):
    """Запись неудачной попытки входа"""
    now = time.time()
    attempts = login_attempts.get(ip)
    if not attempts or now - attempts["last"] > BLOCK_TIME:
        # сбрасываем после блокировки
        login_attempts[ip] = {"count": 1, "last": now}
    else:
        attempts["count"] += 1
        attempts["last"] = now


def reset_attempts(ip: str):
    """Сброс после успешного логина"""
    login_attempts.pop(ip, None)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """Пользователь из сессии или None для гостя."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    return db.get(User, int(user_id))


@router.post("/register", status_code=201)
def register(data: RegisterIn, request: Request, db: Session = Depends(get_db)):
    if db.query(User).filter(User.username == data.username).first():
        return JSONResponse({"success": False, "error": "Пользователь с таким именем уже существует"},
                            status_code=400)
    phone = None
    if data.phone:
        try:
            phone = normalize_phone(data.phone)
        except ValueError:
            return JSONResponse({"success": False, "error": "Некорректный номер телефона"}, status_code=400)

    user = User(username=data.username, password_hash=hash_password(data.password),
                email=data.email, phone=phone)
    db.add(user)
    db.commit()
    db.refresh(user)

    request.session["user_id"] = user.id
    request.session["role"] = user.role
    return {"success": True, "user": user.to_public()}


@router.post("/login")
def login(data: LoginIn, request: Request, db: Session = Depends(get_db)):
    client_ip = request.client.host if request.client else "unknown"

    # Проверка rate limit
    if not check_rate_limit(client_ip):
        return JSONResponse({"success": False, "error": "Слишком много попыток. Подождите 1 минуту."},
                            status_code=429)

    user = db.query(User).filter(User.username == data.username).first()
    if not user or not verify_password(data.password, user.password_hash):
        add_attempt(client_ip)  # фиксируем неудачную попытку
        return JSONResponse({"success": False, "error": "Неверный логин или пароль"}, status_code=401)

    # Успешный вход — сброс счётчика
    reset_attempts(client_ip)

    # сохраняем в сессии
    request.session["user_id"] = user.id
    request.session["role"] = (user.role or "").strip().lower()
    logger.info("Вход: %s role=%s", user.username, user.role)
    return {"success": True, "user": user.to_public()}


# выход
@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"success": True}


@router.get("/whoami")
def whoami(user: Optional[User] = Depends(get_current_user)):
    if not user:
        return {"user": None}
    return {"user": user.to_public(), "loyalty": get_loyalty_progress(user.xp)}
