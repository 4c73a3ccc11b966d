import pytest

from teashop.services.loyalty import (
    LOYALTY_LEVELS,
    get_loyalty_discount,
    get_loyalty_level,
    get_loyalty_progress,
)


@pytest.mark.parametrize("xp, level, discount", [
    (0, 1, 0),
    (2999, 1, 0),
    (3000, 2, 5),
    (6999, 2, 5),
    (7000, 3, 10),
    (15000, 4, 15),
    (1_000_000, 4, 15),
])
def test_level_boundaries(xp, level, discount):
    assert get_loyalty_level(xp).level == level
    assert get_loyalty_discount(xp) == discount


def test_discount_is_monotonic():
    discounts = [get_loyalty_discount(xp) for xp in range(0, 20000, 250)]
    assert discounts == sorted(discounts)


def test_progress_to_next_level():
    progress = get_loyalty_progress(4500)

    assert progress["currentLevel"]["name"] == "Ценитель"
    assert progress["nextLevel"]["level"] == 3
    assert progress["xpToNextLevel"] == 2500
    assert progress["progressPercentage"] == pytest.approx(37.5)


def test_progress_on_top_level():
    progress = get_loyalty_progress(20000)

    assert progress["nextLevel"] is None
    assert progress["xpToNextLevel"] == 0
    assert progress["progressPercentage"] == 100


def test_levels_endpoint(client):
    resp = client.get("/api/loyalty/levels")

    assert resp.status_code == 200
    assert [lvl["discount"] for lvl in resp.json()] == [lvl.discount for lvl in LOYALTY_LEVELS]


def test_my_loyalty_requires_login(client):
    assert client.get("/api/loyalty/me").status_code == 401
