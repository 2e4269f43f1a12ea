import pytest

from client import ApiClientError, TechHavenClient
from conftest import ADDRESS


@pytest.fixture
def api(client):
    return TechHavenClient(http_client=client)


def test_checkout_through_client(api, admin, make_laptop):
    laptop = make_laptop(price=750.0, stock=3)
    token = api.register("Sam", "sam@example.com", "secret1")["token"]
    assert api.login("sam@example.com", "secret1")["user"]["name"] == "Sam"

    cart = api.add_to_cart(laptop["id"], token=token, quantity=2)
    assert cart["total_items"] == 2

    order = api.create_order({
        "order_items": [{"laptop_id": laptop["id"], "quantity": 2, "price": 750.0}],
        "shipping_address": ADDRESS,
        "payment_method": "paypal",
    }, token=token)
    assert order["total_price"] == 1500.0
    assert api.get_cart(token)["items"] == []
    assert api.get_laptop(laptop["id"])["stock"] == 1

    assert api.cancel_order(order["id"], token=token)["status"] == "cancelled"
    assert api.get_laptop(laptop["id"])["stock"] == 3
    assert api.order_count(admin["token"]) == 1


def test_client_raises_normalized_errors(api, user, make_laptop):
    with pytest.raises(ApiClientError) as info:
        api.profile(token="garbage")
    assert info.value.status_code == 401
    assert info.value.payload["error"] == "Unauthorized"

    laptop = make_laptop(stock=1)
    with pytest.raises(ApiClientError) as info:
        api.add_to_cart(laptop["id"], token=user["token"], quantity=5)
    assert info.value.status_code == 400
    assert info.value.message == "Insufficient stock. Available: 1"


def test_token_is_per_call(api, make_user, make_laptop):
    first, second = make_user(), make_user()
    api.add_to_cart(make_laptop()["id"], token=first["token"])
    assert api.get_cart(second["token"])["items"] == []
    assert len(api.get_cart(first["token"])["items"]) == 1
