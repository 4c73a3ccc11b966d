import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from teashop import config
from teashop.db import Base, engine

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("teashop")

# 1) Импортируем все модели до create_all(),
#    чтобы SQLAlchemy знал про классы и связи
import teashop.models  # noqa: F401,E402

from sqlalchemy.orm import configure_mappers  # noqa: E402
configure_mappers()

# 2) Создаём таблицы
Base.metadata.create_all(bind=engine)

from teashop.middleware.rbac import RBACMiddleware  # noqa: E402
from teashop.routers import admin_orders, admin_users, auth, cart, loyalty, orders, pages, payments  # noqa: E402
from teashop.services.receipts import start_receipt_worker  # noqa: E402
from teashop.telegram_subscribe import start_polling  # noqa: E402


# ==== FastAPI app ====
app = FastAPI(title=config.APP_NAME)

# Проверка доступа к /api/admin
app.add_middleware(RBACMiddleware)

# Сессии (пользователь, роль)
app.add_middleware(SessionMiddleware, secret_key=config.SECRET_KEY)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("Невалидный запрос %s: %s", request.url.path, exc.errors())
    return JSONResponse({"success": False, "error": "Неверные данные запроса"}, status_code=400)


# ==== Routers ====
app.include_router(auth.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(loyalty.router)
app.include_router(admin_orders.router)
app.include_router(admin_users.router)
app.include_router(pages.router)


@app.on_event("startup")
async def startup_event():
    if config.RECEIPT_WORKER_ENABLED:
        logger.info("Запуск воркера проверки чеков")
        start_receipt_worker()
    if config.TELEGRAM_POLLING_ENABLED and config.TELEGRAM_TOKEN:
        logger.info("Запуск polling Telegram")
        start_polling()
