from teashop.models.order import Order
from teashop.models.order_status_log import OrderStatusLog
from teashop.models.user import User
from conftest import create_user, login, order_payload


def test_guest_order(client, db, products, telegram_sent):
    payload = order_payload([{"id": products["shu"], "quantity": 100, "pricePerGram": 1}], total=100)

    resp = client.post("/api/orders", json=payload)

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["total"] == 1000.0

    order = db.get(Order, body["orderId"])
    assert order.user_id is None
    assert order.status == "pending"
    assert order.phone == "+79161234567"
    assert order.get_items()[0]["pricePerGram"] == 10.0
    assert "Новый заказ" in telegram_sent[0]

    log = db.query(OrderStatusLog).filter_by(order_id=order.id).one()
    assert log.old_status is None and log.actor == "guest"


def test_first_order_then_full_price(client, db, products):
    user = create_user(db)
    login(client, "buyer")
    items = [{"id": products["shu"], "quantity": 100}]

    first = client.post("/api/orders", json=order_payload(items, total=800))
    second = client.post("/api/orders", json=order_payload(items, total=800))

    assert first.json()["total"] == 800.0
    assert second.json()["total"] == 1000.0

    db.expire_all()
    assert db.get(User, user.id).first_order_discount_used is True
    orders = db.query(Order).order_by(Order.id).all()
    assert [o.used_first_order_discount for o in orders] == [True, False]
    assert orders[0].discount_percent == 20


def test_admin_discount_is_spent_on_one_order(client, db, products):
    user = create_user(db, first_order_discount_used=True, custom_discount=10)
    login(client, "buyer")
    items = [{"id": products["shu"], "quantity": 100}]

    first = client.post("/api/orders", json=order_payload(items))
    second = client.post("/api/orders", json=order_payload(items))

    assert first.json()["total"] == 900.0
    assert second.json()["total"] == 1000.0
    db.expire_all()
    assert db.get(User, user.id).custom_discount is None


def test_below_minimum_creates_nothing(client, db, products, telegram_sent):
    resp = client.post("/api/orders", json=order_payload([{"id": products["gaba"], "quantity": 10}]))

    assert resp.status_code == 400
    assert "Минимальная сумма" in resp.json()["error"]
    assert db.query(Order).count() == 0
    assert telegram_sent == []


def test_rejected_first_order_keeps_discount(client, db, products):
    user = create_user(db)
    login(client, "buyer")

    client.post("/api/orders", json=order_payload([{"id": products["gaba"], "quantity": 10}]))

    db.expire_all()
    assert db.get(User, user.id).first_order_discount_used is False


def test_invalid_payload(client, db, products):
    payload = order_payload([{"id": products["shu"], "quantity": 100}], email="not-an-email")

    resp = client.post("/api/orders", json=payload)

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Неверные данные запроса"}


def test_empty_items_rejected(client, db, products):
    resp = client.post("/api/orders", json=order_payload([]))
    assert resp.status_code == 400


def test_my_orders(client, db, products):
    assert client.get("/api/orders").status_code == 401

    create_user(db)
    login(client, "buyer")
    client.post("/api/orders", json=order_payload([{"id": products["shu"], "quantity": 100}]))

    resp = client.get("/api/orders")
    assert resp.status_code == 200
    assert len(resp.json()) == 1
    assert resp.json()[0]["total"] == 800.0


def test_register_and_whoami(client, db):
    resp = client.post("/api/auth/register", json={
        "username": "newbie", "password": "secret123", "phone": "89161234567",
    })
    assert resp.status_code == 201
    assert resp.json()["user"]["phone"] == "+79161234567"

    me = client.get("/api/auth/whoami").json()
    assert me["user"]["username"] == "newbie"
    assert me["loyalty"]["currentLevel"]["level"] == 1

    dup = client.post("/api/auth/register", json={"username": "newbie", "password": "secret123"})
    assert dup.status_code == 400


def test_login_rate_limit(client, db):
    create_user(db)
    for _ in range(5):
        resp = client.post("/api/auth/login", json={"username": "buyer", "password": "wrong"})
        assert resp.status_code == 401

    resp = client.post("/api/auth/login", json={"username": "buyer", "password": "secret123"})
    assert resp.status_code == 429
