from decimal import Decimal

import shopcore.api.health as health_api
from helpers import fill_cart


def test_health(client, engine, monkeypatch):
    monkeypatch.setattr(health_api, "engine", engine)
    res = client.get("/api/health")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    assert body["db"] is True
    assert body["sweeper_running"] is False


def test_cart_endpoints(client, seed):
    alice = seed["alice"]
    res = client.post(f"/api/cart/{alice}/items", json={"product_id": seed["tea"], "qty": 2})
    assert res.status_code == 200
    assert "item_id" in res.json()

    body = client.get(f"/api/cart/{alice}").json()
    assert [it["product_id"] for it in body["items"]] == [seed["tea"]]
    assert Decimal(str(body["total"])) == Decimal("600")

    assert client.post(f"/api/cart/{alice}/items", json={"product_id": seed["tea"], "qty": 0}).status_code == 400
    assert client.post(f"/api/cart/{alice}/items", json={"product_id": seed["retired"], "qty": 1}).status_code == 400
    assert client.post("/api/cart/9999/items", json={"product_id": seed["tea"], "qty": 1}).status_code == 400

    assert client.delete(f"/api/cart/{alice}/items/{seed['tea']}").status_code == 200
    assert client.delete(f"/api/cart/{alice}/items/{seed['tea']}").status_code == 404


def test_checkout_and_idempotency(client, seed, session_factory):
    fill_cart(session_factory, seed["alice"], {seed["tea"]: 1})
    payload = {"user_id": seed["alice"], "shipping_address": "1 Main St", "payment_method": "card"}
    headers = {"Idempotency-Key": "idem-123"}

    res = client.post("/api/orders", json=payload, headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    order_id = body["order_id"]

    again = client.post("/api/orders", json=payload, headers=headers)
    assert again.status_code == 200
    assert again.json()["order_id"] == order_id

    empty = client.post("/api/orders", json={"user_id": seed["carol"]})
    assert empty.status_code == 400
    assert empty.json()["detail"]["message"] == "cart empty"


def test_order_endpoints(client, seed, session_factory):
    fill_cart(session_factory, seed["alice"], {seed["tea"]: 2})
    order_id = client.post("/api/orders", json={"user_id": seed["alice"]}).json()["order_id"]

    details = client.get(f"/api/orders/{order_id}")
    assert details.status_code == 200
    assert details.json()["can_cancel"] is True
    assert client.get("/api/orders/9999").status_code == 404

    assert len(client.get(f"/api/orders/user/{seed['alice']}").json()) == 1
    assert client.get("/api/orders/statistics").json()["total_orders"] == 1

    assert client.post(f"/api/orders/{order_id}/status", json={"status": "Processing"}).status_code == 200
    assert client.post(f"/api/orders/{order_id}/status", json={"status": "Pending"}).status_code == 400

    refund = client.post(f"/api/orders/{order_id}/refund", json={"reason": "meh"})
    assert refund.status_code == 400
    assert refund.json()["detail"] == "only delivered orders can be refunded"
    assert client.get(f"/api/orders/{order_id}/can-refund").json()["allowed"] is False

    assert client.post(f"/api/orders/{order_id}/payment", json={"payment_reference": "P-1"}).status_code == 200

    assert client.get(f"/api/orders/{order_id}/can-cancel").json() == {
        "allowed": True,
        "reason": "order can be cancelled",
    }
    assert client.post(f"/api/orders/{order_id}/cancel", json={"reason": "changed mind"}).status_code == 200
    second = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "again"})
    assert second.status_code == 400
    assert second.json()["detail"] == "order is already cancelled"


def test_batch_status_endpoint(client, seed, session_factory):
    fill_cart(session_factory, seed["alice"], {seed["tea"]: 1})
    first = client.post("/api/orders", json={"user_id": seed["alice"]}).json()["order_id"]
    fill_cart(session_factory, seed["alice"], {seed["coffee"]: 1})
    second = client.post("/api/orders", json={"user_id": seed["alice"]}).json()["order_id"]

    res = client.post(
        "/api/orders/batch-status",
        json={"order_ids": [first, second], "status": "Shipped", "updated_by": 1},
    )
    assert res.json() == {"requested": 2, "updated": 2}


def test_inventory_endpoints(client, seed):
    tea = seed["tea"]
    res = client.get(f"/api/inventory/available/{tea}", params={"quantity": 3})
    assert res.status_code == 200
    assert res.json()["is_available"] is True
    assert client.get("/api/inventory/available/9999").status_code == 404
    assert client.get(f"/api/inventory/available/{tea}", params={"quantity": 0}).status_code == 422

    batch = client.post(
        "/api/inventory/batch-check", json={"items": {str(tea): 5, str(seed["coffee"]): 6}}
    ).json()
    assert batch[str(tea)]["is_available"] is True
    assert batch[str(seed["coffee"])]["is_available"] is False

    adjusted = client.post(
        "/api/inventory/adjust", json={"product_id": tea, "adjustment": -3, "reason": "damaged"}
    )
    assert adjusted.status_code == 200
    assert adjusted.json()["available"] == 7
    missing = client.post(
        "/api/inventory/adjust", json={"product_id": 9999, "adjustment": 1, "reason": "ghost"}
    )
    assert missing.status_code == 400

    low = client.get("/api/inventory/low-stock").json()
    assert [a["product_id"] for a in low] == [seed["mug"], seed["coffee"]]

    history = client.get(f"/api/inventory/history/{tea}").json()
    assert history["total_outbound"] == 3
    assert len(history["movements"]) == 1

    assert client.post("/api/inventory/cleanup").json() == {"removed": 0}
