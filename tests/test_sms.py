import pytest
import requests

from teashop.services.sms import SMSRU_URL, SmsError, SmsRuClient


class FakeResponse:
    def __init__(self, data):
        self._data = data

    def raise_for_status(self):
        pass

    def json(self):
        return self._data


class FakeSession:
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params))
        if self.error:
            raise self.error
        return FakeResponse(self.data)


def ok_response(to="79161234567"):
    return {"status": "OK", "status_code": 100, "balance": 42.5,
            "sms": {to: {"status": "OK", "status_code": 100, "sms_id": "000-100"}}}


def test_send():
    session = FakeSession(ok_response())
    client = SmsRuClient("key", sender="PuerPub", session=session)

    assert client.send("8 (916) 123-45-67", "Ваш чек") == "000-100"

    url, params = session.requests[0]
    assert url == SMSRU_URL
    assert params == {"api_id": "key", "to": "79161234567", "msg": "Ваш чек",
                      "from": "PuerPub", "json": 1}


def test_account_error():
    session = FakeSession({"status": "ERROR", "status_code": 201})
    with pytest.raises(SmsError, match="Не хватает средств"):
        SmsRuClient("key", session=session).send("+79161234567", "x")


def test_per_phone_error():
    data = ok_response()
    data["sms"]["79161234567"] = {"status": "ERROR", "status_code": 207}
    with pytest.raises(SmsError, match="нельзя отправлять"):
        SmsRuClient("key", session=FakeSession(data)).send("+79161234567", "x")


def test_network_error():
    session = FakeSession(error=requests.ConnectionError("boom"))
    with pytest.raises(SmsError):
        SmsRuClient("key", session=session).send("+79161234567", "x")


def test_missing_key_and_bad_phone():
    with pytest.raises(SmsError):
        SmsRuClient("", session=FakeSession(ok_response())).send("+79161234567", "x")
    session = FakeSession(ok_response())
    with pytest.raises(SmsError):
        SmsRuClient("key", session=session).send("12345", "x")
    assert session.requests == []
