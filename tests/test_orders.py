"""Order placement, lookup and fulfillment flags."""

import pytest
from bson import ObjectId

import orders
from conftest import make_user
from errors import OrderNotFound


def _order_body(product_id, **overrides):
    body = {
        "orderItems": [
            {"name": "Trail Shoes", "qty": 2, "image": "/img/shoes.png", "price": 89.5, "product": product_id}
        ],
        "shippingAddress": {"address": "1 Main St", "city": "Springfield", "postalCode": "12345", "country": "US"},
        "paymentMethod": "PayPal",
        "taxPrice": 10.0,
        "shippingPrice": 5.0,
        "totalPrice": 194.0,
    }
    body.update(overrides)
    return body


@pytest.fixture()
def order_id(client, user, product):
    response = client.post("/api/orders", json=_order_body(product), headers=user["headers"])
    assert response.status_code == 201
    return response.json()["id"]


class TestPlaceOrder:
    def test_create_order(self, client, user, product):
        response = client.post("/api/orders", json=_order_body(product), headers=user["headers"])

        assert response.status_code == 201
        data = response.json()
        assert data["user"] == user["id"]
        assert data["orderItems"][0]["product"] == product
        assert data["orderItems"][0]["qty"] == 2
        assert data["isPaid"] is False
        assert data["isDelivered"] is False
        assert "paidAt" not in data
        assert "deliveredAt" not in data

    @pytest.mark.parametrize("field", ["taxPrice", "shippingPrice", "totalPrice"])
    def test_negative_amounts_rejected(self, client, user, product, field):
        response = client.post("/api/orders", json=_order_body(product, **{field: -1}), headers=user["headers"])

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == field

    def test_missing_shipping_address_field(self, client, user, product):
        body = _order_body(product, shippingAddress={"address": "1 Main St", "city": "Springfield"})

        response = client.post("/api/orders", json=body, headers=user["headers"])

        assert response.status_code == 400
        fields = {e["field"] for e in response.json()["errors"]}
        assert fields == {"shippingAddress.postalCode", "shippingAddress.country"}

    def test_invalid_product_reference(self, client, user, product):
        body = _order_body(product)
        body["orderItems"][0]["product"] = "xyz"

        response = client.post("/api/orders", json=body, headers=user["headers"])

        assert response.status_code == 400


class TestReadOrders:
    def test_list_own_orders(self, client, db, settings, user, order_id):
        other = make_user(db, settings, "Other", "other@example.com", "secret12")

        mine = client.get("/api/orders", headers=user["headers"]).json()
        theirs = client.get("/api/orders", headers=other["headers"]).json()

        assert [o["id"] for o in mine] == [order_id]
        assert theirs == []

    def test_get_own_order(self, client, user, order_id):
        response = client.get(f"/api/orders/{order_id}", headers=user["headers"])

        assert response.status_code == 200
        assert response.json()["id"] == order_id

    def test_get_other_users_order(self, client, db, settings, order_id):
        other = make_user(db, settings, "Other", "other@example.com", "secret12")

        response = client.get(f"/api/orders/{order_id}", headers=other["headers"])

        assert response.status_code == 403

    @pytest.mark.parametrize("bad_id", ["not-an-id", str(ObjectId())])
    def test_get_unknown_order(self, client, user, bad_id):
        response = client.get(f"/api/orders/{bad_id}", headers=user["headers"])

        assert response.status_code == 404
        assert response.json() == {"msg": "Order not found"}

    def test_search(self, client, user, order_id):
        hit = client.get("/api/orders/search", params={"query": "springfield"}, headers=user["headers"])
        miss = client.get("/api/orders/search", params={"query": "Bitcoin"}, headers=user["headers"])

        assert [o["id"] for o in hit.json()] == [order_id]
        assert miss.json() == []

    def test_search_requires_query(self, client, user):
        response = client.get("/api/orders/search", headers=user["headers"])

        assert response.status_code == 400


class TestFulfillment:
    def test_paid_flag_stamps_and_clears_timestamp(self, db, order_id):
        order = orders.set_fulfillment(db, order_id, is_paid=True)
        assert order["isPaid"] is True
        assert order.get("paidAt") is not None

        order = orders.set_fulfillment(db, order_id, is_delivered=True)
        delivered_at = order["deliveredAt"]

        order = orders.set_fulfillment(db, order_id, is_paid=False)
        assert order["isPaid"] is False
        assert "paidAt" not in order
        assert order["isDelivered"] is True
        assert order["deliveredAt"] == delivered_at

    def test_no_flags_leaves_order_untouched(self, db, order_id):
        before = db["order"].find_one({"_id": ObjectId(order_id)})

        after = orders.set_fulfillment(db, order_id)

        assert after == before

    def test_unknown_order(self, db):
        with pytest.raises(OrderNotFound):
            orders.set_fulfillment(db, str(ObjectId()), is_paid=True)

    def test_admin_endpoint(self, client, admin, order_id):
        response = client.put(f"/api/admin/orders/{order_id}", json={"isDelivered": True}, headers=admin["headers"])

        assert response.status_code == 200
        data = response.json()
        assert data["isDelivered"] is True
        assert data["deliveredAt"]
        assert data["isPaid"] is False
        assert "paidAt" not in data

    def test_non_admin_forbidden(self, client, user, order_id):
        response = client.put(f"/api/admin/orders/{order_id}", json={"isPaid": True}, headers=user["headers"])

        assert response.status_code == 403

    def test_flag_must_be_boolean(self, client, admin, order_id):
        response = client.put(f"/api/admin/orders/{order_id}", json={"isPaid": "yes"}, headers=admin["headers"])

        assert response.status_code == 400

    def test_admin_lists_orders_with_user(self, client, admin, user, order_id):
        response = client.get("/api/admin/orders", headers=admin["headers"])

        assert response.status_code == 200
        order = response.json()[0]
        assert order["user"]["email"] == user["email"]
        assert "password" not in order["user"]
