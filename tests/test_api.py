import pytest
from fastapi.testclient import TestClient

from shopcart.main import create_app

from tests.conftest import BrokenCache


@pytest.fixture
def app(settings, engine, products, cache, coupon_validator):
    return create_app(
        settings,
        engine=engine,
        product_client=products,
        cache=cache,
        coupon_validator=coupon_validator,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


USER = {"user_id": "42"}
GUEST = {"session_id": "sess-abc"}


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "healthy"


def test_health_degraded_when_cache_down(settings, engine, products):
    app = create_app(settings, engine=engine, product_client=products, cache=BrokenCache(), coupon_validator=None)
    with TestClient(app) as c:
        res = c.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "degraded"
    assert res.json()["cache"] == "down"


def test_owner_is_required_exactly_once(client):
    assert client.get("/carts").status_code == 400
    assert client.get("/carts", params={**USER, **GUEST}).status_code == 400


def test_get_empty_cart(client):
    res = client.get("/carts", params=USER)

    assert res.status_code == 200
    body = res.json()
    assert body["id"] is None
    assert body["items"] == []
    assert body["user_id"] == "42"


def test_add_update_remove_flow(client):
    res = client.post("/carts/items", params=USER, json={"product_id": "P1", "quantity": 3})
    assert res.status_code == 200
    body = res.json()
    assert body["subtotal"] == "30.00"
    assert body["tax_amount"] == "3.60"
    item_id = body["items"][0]["id"]

    res = client.patch(f"/carts/items/{item_id}", params=USER, json={"quantity": 5})
    assert res.json()["items"][0]["quantity"] == 5

    res = client.get("/carts/summary", params=USER)
    assert res.json()["total_quantity"] == 5

    res = client.delete(f"/carts/items/{item_id}", params=USER)
    assert res.json()["items"] == []
    assert res.json()["total_amount"] == "0.00"


def test_error_mapping(client):
    res = client.post("/carts/items", params=USER, json={"product_id": "P1", "quantity": 0})
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_QUANTITY"

    res = client.post("/carts/items", params=USER, json={"product_id": "P3", "quantity": 100})
    assert res.status_code == 400
    assert res.json()["code"] == "LIMIT_EXCEEDED"

    res = client.post("/carts/items", params=USER, json={"product_id": "P3", "quantity": 10})
    assert res.status_code == 409
    assert res.json()["code"] == "OUT_OF_STOCK"
    assert res.json()["details"]["available"] == 4

    res = client.post("/carts/items", params=USER, json={"product_id": "NOPE", "quantity": 1})
    assert res.status_code == 404

    res = client.patch("/carts/items/missing", params=USER, json={"quantity": 1})
    assert res.status_code == 404
    assert res.json()["code"] == "CART_NOT_FOUND"


def test_coupons(client):
    client.post("/carts/items", params=USER, json={"product_id": "P1", "quantity": 10})

    res = client.post("/carts/coupons", params=USER, json={"code": "save10"})
    assert res.status_code == 200
    assert res.json()["applied_coupons"] == ["SAVE10"]
    assert res.json()["discount_amount"] == "10.00"

    res = client.post("/carts/coupons", params=USER, json={"code": "NOPE"})
    assert res.status_code == 422
    assert res.json()["code"] == "COUPON_INVALID"

    res = client.delete("/carts/coupons/SAVE10", params=USER)
    assert res.json()["applied_coupons"] == []


def test_merge_and_convert(client):
    client.post("/carts/items", params=GUEST, json={"product_id": "P1", "quantity": 2})
    client.post("/carts/items", params=USER, json={"product_id": "P1", "quantity": 1})

    res = client.post("/carts/merge", json={"session_id": "sess-abc", "user_id": "42"})
    assert res.status_code == 200
    assert res.json()["cart"]["items"][0]["quantity"] == 3

    res = client.post("/carts/convert", params=USER)
    assert res.status_code == 200
    assert res.json()["status"] == "CONVERTED"

    assert client.post("/carts/convert", params=USER).status_code == 404


def test_notes_clear_and_validate(client):
    client.post("/carts/items", params=GUEST, json={"product_id": "P1", "quantity": 1})

    res = client.put("/carts/notes", params=GUEST, json={"notes": "gift wrap"})
    assert res.json()["notes"] == "gift wrap"

    res = client.get("/carts/validate", params=GUEST)
    assert res.json() == {"is_valid": True, "issues": []}

    res = client.delete("/carts", params=GUEST)
    assert res.json()["items"] == []
