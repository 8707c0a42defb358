# tests/test_sdk.py
import pytest

from sdk.pystore import StoreAPIError, StoreClient


@pytest.fixture
def sdk(client):
    return StoreClient(base_url="http://testserver", session=client)


def test_sdk_shopping_flow(sdk, http_product):
    p = http_product(name="Notebook", price="3.50", stock=4)

    sdk.register("sdk@example.com", "secret123", first_name="Sam")
    assert sdk.profile()["first_name"] == "Sam"

    cart = sdk.add_to_cart(p["id"], 2)
    assert cart["total"] == "7.00"

    order = sdk.place_order()
    assert order["total_amount"] == "7.00"
    assert sdk.view_cart()["items"] == []
    assert sdk.list_orders()["meta"]["total"] == 1
    assert sdk.get_order(order["id"])["items"][0]["product_name"] == "Notebook"
    assert sdk.get_product(p["id"])["stock"] == 2
    assert [x["name"] for x in sdk.search_products("note")["data"]] == ["Notebook"]


def test_sdk_token_rotation_and_logout(sdk):
    sdk.register("rotate@example.com", "secret123")
    first = sdk.refresh_token
    sdk.refresh()
    assert sdk.refresh_token != first

    sdk.logout()
    assert sdk.access_token is None
    with pytest.raises(StoreAPIError) as exc:
        sdk.profile()
    assert exc.value.status_code == 401


def test_sdk_surfaces_api_errors(sdk, http_product):
    p = http_product(name="Scarce", stock=1)
    sdk.register("err@example.com", "secret123")
    with pytest.raises(StoreAPIError) as exc:
        sdk.add_to_cart(p["id"], 5)
    assert exc.value.status_code == 409
    assert exc.value.detail == "insufficient stock for product: Scarce"

    with pytest.raises(StoreAPIError) as exc:
        sdk.login("err@example.com", "wrong-password")
    assert exc.value.status_code == 401
