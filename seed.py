# seed.py — пересоздать таблицы и наполнить каталог для разработки
from decimal import Decimal

from sqlalchemy.orm import configure_mappers

from teashop.db import Base, engine, SessionLocal
import teashop.models  # noqa: F401  подтягиваем все модели
from teashop.models.catalog import Product
from teashop.models.user import User
from teashop.utils.enums import UserRole
from teashop.utils.security import hash_password

PRODUCTS = [
    ("Шу Пуэр «Гунтин» 2015", "15.00", "Шу Пуэр"),
    ("Шен Пуэр «Лао Бань Чжан»", "32.50", "Шен Пуэр"),
    ("Габа улун", "18.00", "Габа"),
    ("Дянь Хун", "9.90", "Красный"),
    ("Лунцзин", "12.00", "Зелёный"),
]

USERS = [
    ("admin", "123456", UserRole.ADMIN.value),
    ("manager", "123456", UserRole.MANAGER.value),
]


def run_seed():
    # === RESET ===
    Base.metadata.drop_all(bind=engine)
    print("🗑 Все таблицы удалены")

    configure_mappers()
    Base.metadata.create_all(bind=engine)
    print("✅ Все таблицы пересозданы")

    db = SessionLocal()
    try:
        for name, price, tea_type in PRODUCTS:
            db.add(Product(name=name, price_per_gram=Decimal(price), tea_type=tea_type, is_active=True))
            print(f"✅ Товар создан: {name}")

        for username, raw_password, role in USERS:
            db.add(User(username=username, password_hash=hash_password(raw_password), role=role))
            print(f"✅ User created (username='{username}', password='{raw_password}', role='{role}')")

        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
