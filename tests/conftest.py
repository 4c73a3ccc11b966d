import os

# окружение для тестов выставляем до импорта приложения
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["RECEIPT_WORKER_ENABLED"] = "0"
os.environ["TELEGRAM_POLLING_ENABLED"] = "0"
os.environ["TELEGRAM_TOKEN"] = ""
os.environ["SMSRU_API_KEY"] = ""
os.environ["TINKOFF_TERMINAL_KEY"] = "TestTerminal"
os.environ["TINKOFF_SECRET_KEY"] = "secret"
os.environ["MIN_ORDER_TOTAL"] = "100"
os.environ["FIRST_ORDER_DISCOUNT_PERCENT"] = "20"
os.environ["RECEIPT_RETRY_DELAYS"] = "0,3,4,5"

import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from teashop.main import app
from teashop.db import Base, SessionLocal, engine
from teashop.models.catalog import Product
from teashop.models.order import Order
from teashop.models.user import User
from teashop.routers import auth as auth_router
from teashop.services.sms import SmsError, get_sms_client
from teashop.services.tinkoff import TinkoffClient, get_tinkoff_client
from teashop.telegram.telegram_notify import notifier
from teashop.utils.enums import UserRole
from teashop.utils.security import hash_password

PASSWORD = "secret123"


class FakeTinkoff(TinkoffClient):
    """Настоящая подпись и разбор, без сети."""

    def __init__(self):
        super().__init__("TestTerminal", "secret", api_url="https://tinkoff.test/v2")
        self.calls = []
        self.states = []          # очередь ответов GetState
        self.fail_with = None     # TinkoffError для любого запроса
        self.next_payment_id = 7001

    def _post(self, method, params):
        self.calls.append((method, params))
        if self.fail_with:
            raise self.fail_with
        if method == "Init":
            payment_id = self.next_payment_id
            self.next_payment_id += 1
            return {"Success": True, "PaymentId": payment_id, "Status": "NEW",
                    "PaymentURL": f"https://pay.tinkoff.test/{payment_id}"}
        if self.states:
            return self.states.pop(0)
        return {"Success": True, "Status": "NEW", "PaymentId": params["PaymentId"]}

    def state_calls(self):
        return [c for c in self.calls if c[0] == "GetState"]

    def signed(self, **fields):
        payload = {"TerminalKey": self.terminal_key, "Success": True, "ErrorCode": "0"}
        payload.update(fields)
        payload["Token"] = self.make_token(payload)
        return payload


class FakeSms:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, phone, text):
        if self.fail:
            raise SmsError("SMS sending failed: Не хватает средств на лицевом счёте")
        self.sent.append((phone, text))
        return "sms-1"


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    auth_router.login_attempts.clear()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tinkoff():
    return FakeTinkoff()


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def telegram_sent(monkeypatch):
    sent = []

    def fake_send(message):
        sent.append(message)
        return 1

    monkeypatch.setattr(notifier, "send", fake_send)
    return sent


@pytest.fixture
def client(db, tinkoff, sms, telegram_sent):
    app.dependency_overrides[get_tinkoff_client] = lambda: tinkoff
    app.dependency_overrides[get_sms_client] = lambda: sms
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def products(db):
    """Шу Пуэр — 10 ₽/г, Габа — 5 ₽/г, скрытый товар — 1 ₽/г."""
    shu = Product(name="Шу Пуэр", price_per_gram=Decimal("10.00"), tea_type="Шу Пуэр")
    gaba = Product(name="Габа", price_per_gram=Decimal("5.00"), tea_type="Габа")
    hidden = Product(name="Снят с продажи", price_per_gram=Decimal("1.00"), is_active=False)
    db.add_all([shu, gaba, hidden])
    db.commit()
    return {"shu": shu.id, "gaba": gaba.id, "hidden": hidden.id}


def create_user(db, username="buyer", role=UserRole.CUSTOMER.value, **fields):
    user = User(username=username, password_hash=hash_password(PASSWORD), role=role, **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_order(db, user=None, total="800.00", status="pending", **fields):
    items = fields.pop("items", [{"id": 1, "name": "Шу Пуэр", "pricePerGram": 10.0, "quantity": 100}])
    values = {
        "name": "Иван Петров",
        "email": "ivan@example.com",
        "phone": "+79161234567",
        "address": "Москва, ул. Чайная, д. 1",
    }
    values.update(fields)
    order = Order(
        user_id=user.id if user else None,
        items=json.dumps(items, ensure_ascii=False),
        subtotal=Decimal(total),
        total=Decimal(total),
        status=status,
        **values,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def login(client, username, password=PASSWORD):
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp


def order_payload(items, total=0, **fields):
    payload = {
        "name": "Иван Петров",
        "email": "ivan@example.com",
        "phone": "8 (916) 123-45-67",
        "address": "Москва, ул. Чайная, д. 1",
        "comment": "",
        "items": items,
        "total": total,
    }
    payload.update(fields)
    return payload
