import hashlib
import json
from decimal import Decimal

import pytest

from teashop.models.order import Order
from teashop.services.tinkoff import (
    ReceiptMismatchError,
    TinkoffClient,
    TinkoffError,
    distribute_discount,
    to_kopecks,
)


class FakeResponse:
    def __init__(self, data):
        self._data = data

    def json(self):
        return self._data


class FakeSession:
    def __init__(self, data):
        self.data = data
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append((url, json, timeout))
        return FakeResponse(self.data)


def make_order(total="800.00", items=None):
    items = items or [
        {"id": 1, "name": "Шу Пуэр", "pricePerGram": 10.0, "quantity": 50},
        {"id": 2, "name": "Габа", "pricePerGram": 5.0, "quantity": 100},
    ]
    return Order(id=42, total=Decimal(total), items=json.dumps(items, ensure_ascii=False),
                 email="ivan@example.com", phone="+79161234567")


def test_token_uses_sorted_scalar_fields_and_password():
    client = TinkoffClient("T", "secret")
    params = {
        "TerminalKey": "T",
        "Amount": 100000,
        "OrderId": "1",
        "Description": "d",
        "Receipt": {"Items": []},
        "DATA": {"Email": "x@y.z"},
    }

    expected = hashlib.sha256("100000d1secretT".encode()).hexdigest()
    assert client.make_token(params) == expected


def test_token_ignores_existing_token_and_formats_bools():
    client = TinkoffClient("T", "secret")
    params = {"TerminalKey": "T", "Success": True, "Token": "whatever"}

    expected = hashlib.sha256("secrettrueT".encode()).hexdigest()
    assert client.make_token(params) == expected


def test_password_entities_are_decoded():
    assert TinkoffClient("T", "a&amp;b").password == "a&b"


def test_verify_notification():
    client = TinkoffClient("T", "secret")
    notification = {"TerminalKey": "T", "OrderId": "42", "Success": True,
                    "Status": "CONFIRMED", "PaymentId": 7001, "Amount": 80000}
    notification["Token"] = client.make_token(notification)

    assert client.verify_notification(notification) is True

    forged = dict(notification, Amount=1)
    assert client.verify_notification(forged) is False
    assert client.verify_notification({k: v for k, v in notification.items() if k != "Token"}) is False


def test_distribute_discount_proportionally():
    assert distribute_discount([50000, 30000], 64000) == [40000, 24000]


def test_distribute_without_discount():
    assert distribute_discount([500, 700], 1200) == [500, 700]


def test_distribute_keeps_one_kopeck_per_item():
    result = distribute_discount([3, 1], 2)

    assert result == [1, 1]


def test_distribute_remainder_goes_to_last_item():
    result = distribute_discount([333, 333, 334], 901)

    assert sum(result) == 901
    assert all(x >= 1 for x in result)
    assert result[:2] == [301, 301]


def test_distribute_impossible_total():
    with pytest.raises(ReceiptMismatchError):
        distribute_discount([100, 100, 100], 2)


def test_build_receipt_sums_to_payment_amount():
    client = TinkoffClient("T", "secret")
    order = make_order(total="800.00")

    receipt = client.build_receipt(order)

    amounts = [item["Amount"] for item in receipt["Items"]]
    assert sum(amounts) == to_kopecks(order.total) == 80000
    assert receipt["Items"][0]["Name"] == "Шу Пуэр (50 г)"
    assert all(item["Quantity"] == 1 and item["Price"] == item["Amount"] for item in receipt["Items"])


def test_init_signs_and_returns_session():
    session = FakeSession({"Success": True, "PaymentId": 555, "Status": "NEW",
                           "PaymentURL": "https://pay.test/555"})
    client = TinkoffClient("T", "secret", api_url="https://tinkoff.test/v2", session=session)

    result = client.init(make_order(), notification_url="https://shop.test/api/payments/notification")

    assert result.payment_id == "555"
    assert result.payment_url == "https://pay.test/555"
    url, sent, _ = session.requests[0]
    assert url == "https://tinkoff.test/v2/Init"
    assert sent["Amount"] == 80000
    assert sent["OrderId"] == "42"
    assert sent["Token"] == client.make_token(sent)


def test_init_rejected_by_gateway():
    session = FakeSession({"Success": False, "ErrorCode": "204", "Message": "Неверный токен"})
    client = TinkoffClient("T", "secret", session=session)

    with pytest.raises(TinkoffError) as exc:
        client.init(make_order(), notification_url="https://shop.test/n")

    assert exc.value.error_code == "204"


def test_bad_receipt_fails_before_request():
    session = FakeSession({"Success": True})
    client = TinkoffClient("T", "secret", session=session)
    order = make_order(total="0.01")

    with pytest.raises(ReceiptMismatchError):
        client.init(order, notification_url="https://shop.test/n")
    assert session.requests == []


def test_unconfigured_client_raises():
    with pytest.raises(TinkoffError):
        TinkoffClient("", "").get_state("1")


@pytest.mark.parametrize("payload, url", [
    ({"ReceiptUrl": "https://check.test/1"}, "https://check.test/1"),
    ({"Receipt": {"Url": "https://check.test/2"}}, "https://check.test/2"),
    ({"Receipts": [{"Foo": 1}, {"ReceiptURL": "https://check.test/3"}]}, "https://check.test/3"),
    ({"PaymentURL": "https://pay.test/1", "Status": "CONFIRMED"}, None),
    ({"Url": ""}, None),
])
def test_extract_receipt_url(payload, url):
    assert TinkoffClient.extract_receipt_url(payload) == url
