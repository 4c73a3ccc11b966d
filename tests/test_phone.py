import pytest

from teashop.utils.phone import normalize_phone


@pytest.mark.parametrize("raw", [
    "9161234567",
    "79161234567",
    "89161234567",
    "+7 (916) 123-45-67",
    "8-916-123-45-67",
])
def test_normalize(raw):
    assert normalize_phone(raw) == "+79161234567"


@pytest.mark.parametrize("raw", ["", "12345", "19161234567", "+1 202 555 01234"])
def test_invalid(raw):
    with pytest.raises(ValueError):
        normalize_phone(raw)
