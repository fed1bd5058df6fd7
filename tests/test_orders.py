from bakery.models import Order, OrderItem, Product

SHIPPING = {"name": "Alice Nguyen", "shipping_address": "12 Hang Bong, Ha Noi", "phone": "0912345678"}


def _checkout(client, headers, **extra):
    return client.post("/api/orders", headers=headers, json={**SHIPPING, **extra})


def _fill_cart(client, headers, product_id, quantity):
    r = client.post("/api/cart", headers=headers, json={"productId": product_id, "quantity": quantity})
    assert r.status_code == 200, r.text


def test_checkout_creates_pending_order(client, user_headers, make_product, stock_of, outbox):
    pid = make_product("Croissant", price=100, stock=5)
    _fill_cart(client, user_headers, pid, 2)

    r = _checkout(client, user_headers, note="Ring twice")
    assert r.status_code == 201, r.text
    order = r.json()
    assert order["status"] == "pending"
    assert order["total_amount"] == 200
    assert order["payment_method"] == "cod"
    assert order["note"] == "Ring twice"
    assert order["next_statuses"] == ["cancelled", "processing"]
    assert [(i["product_name"], i["quantity"], i["price"]) for i in order["items"]] == [("Croissant", 2, 100)]

    assert stock_of(pid) == 3
    assert client.get("/api/cart", headers=user_headers).json()["items"] == []
    assert outbox[-1]["subject"] == f"Order #{order['id']} received"


def test_checkout_empty_cart(client, user_headers):
    assert _checkout(client, user_headers).status_code == 400


def test_checkout_requires_shipping_details(client, user_headers, make_product):
    pid = make_product()
    _fill_cart(client, user_headers, pid, 1)
    r = client.post("/api/orders", headers=user_headers, json={**SHIPPING, "shipping_address": "   "})
    assert r.status_code == 422
    r = client.post("/api/orders", headers=user_headers, json={**SHIPPING, "payment_method": "cash"})
    assert r.status_code == 422


def test_checkout_rolls_back_when_stock_ran_out(client, user_headers, make_product, stock_of, db):
    a = make_product("A", price=10, stock=5)
    b = make_product("B", price=20, stock=5)
    _fill_cart(client, user_headers, a, 2)
    _fill_cart(client, user_headers, b, 3)

    # someone else bought B in the meantime
    db.get(Product, b).stock = 1
    db.commit()

    r = _checkout(client, user_headers)
    assert r.status_code == 409
    assert stock_of(a) == 5
    assert stock_of(b) == 1
    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0
    assert len(client.get("/api/cart", headers=user_headers).json()["items"]) == 2


def test_order_prices_are_snapshots(client, user_headers, admin_headers, make_product):
    pid = make_product("Tart", price=100, stock=5)
    _fill_cart(client, user_headers, pid, 2)
    oid = _checkout(client, user_headers).json()["id"]

    client.put(f"/api/products/{pid}", headers=admin_headers, json={"price": 999, "name": "Fancy Tart"})

    order = client.get(f"/api/orders/{oid}", headers=user_headers).json()
    assert order["total_amount"] == 200
    assert order["items"][0]["price"] == 100
    assert order["items"][0]["product_name"] == "Tart"
    assert sum(i["price"] * i["quantity"] for i in order["items"]) == order["total_amount"]

    # purging the product keeps the order line
    client.delete(f"/api/products/{pid}/permanent", headers=admin_headers)
    order = client.get(f"/api/orders/{oid}", headers=user_headers).json()
    assert order["items"][0]["product_id"] is None
    assert order["items"][0]["product_name"] == "Tart"


def test_customer_cancels_pending_order_and_stock_returns(client, user_headers, make_product, stock_of):
    pid = make_product(stock=5)
    _fill_cart(client, user_headers, pid, 2)
    oid = _checkout(client, user_headers).json()["id"]
    assert stock_of(pid) == 3

    r = client.put(f"/api/orders/{oid}/status", headers=user_headers, json={"status": "cancelled"})
    assert r.status_code == 400

    r = client.put(f"/api/orders/{oid}/status", headers=user_headers,
                   json={"status": "cancelled", "note": "Changed my mind"})
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert r.json()["note"] == "Changed my mind"
    assert r.json()["next_statuses"] == []
    assert stock_of(pid) == 5

    # terminal
    r = client.put(f"/api/orders/{oid}/status", headers=user_headers,
                   json={"status": "cancelled", "note": "again"})
    assert r.status_code == 400
    assert stock_of(pid) == 5


def test_shipped_order_cannot_be_cancelled(client, user_headers, admin_headers, make_product, stock_of):
    pid = make_product(stock=5)
    _fill_cart(client, user_headers, pid, 1)
    oid = _checkout(client, user_headers).json()["id"]

    for status in ("processing", "shipped"):
        r = client.put(f"/api/admin/orders/{oid}/status", headers=admin_headers, json={"status": status})
        assert r.status_code == 200, r.text

    r = client.put(f"/api/orders/{oid}/status", headers=user_headers,
                   json={"status": "cancelled", "note": "too slow"})
    assert r.status_code == 400
    r = client.put(f"/api/admin/orders/{oid}/status", headers=admin_headers, json={"status": "cancelled"})
    assert r.status_code == 400
    assert client.get(f"/api/orders/{oid}", headers=user_headers).json()["status"] == "shipped"
    assert stock_of(pid) == 4


def test_admin_cancels_pending_order(client, user_headers, admin_headers, make_product, stock_of):
    pid = make_product(stock=5)
    _fill_cart(client, user_headers, pid, 3)
    oid = _checkout(client, user_headers).json()["id"]
    assert stock_of(pid) == 2

    r = client.put(f"/api/admin/orders/{oid}/status", headers=admin_headers,
                   json={"status": "cancelled", "note": "Out of delivery area"})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "cancelled"
    assert r.json()["note"] == "Out of delivery area"
    assert stock_of(pid) == 5


def test_admin_transition_table(client, user_headers, admin_headers, make_product):
    pid = make_product(stock=5)
    _fill_cart(client, user_headers, pid, 1)
    oid = _checkout(client, user_headers).json()["id"]

    def move(status):
        return client.put(f"/api/orders/{oid}/status", headers=admin_headers, json={"status": status})

    assert move("shipped").status_code == 400
    assert move("processing").json()["next_statuses"] == ["cancelled", "shipped"]
    assert move("shipped").json()["next_statuses"] == ["completed", "delivered"]
    assert move("delivered").json()["next_statuses"] == ["completed"]
    assert move("completed").json()["next_statuses"] == []
    assert move("pending").status_code == 400


def test_customer_may_only_cancel(client, user_headers, make_product):
    pid = make_product(stock=5)
    _fill_cart(client, user_headers, pid, 1)
    oid = _checkout(client, user_headers).json()["id"]
    r = client.put(f"/api/orders/{oid}/status", headers=user_headers, json={"status": "processing"})
    assert r.status_code == 403


def test_orders_are_private(client, register, user_headers, admin_headers, make_product):
    pid = make_product(stock=5)
    _fill_cart(client, user_headers, pid, 1)
    oid = _checkout(client, user_headers).json()["id"]

    _, other = register("eve")
    assert client.get(f"/api/orders/{oid}", headers=other).status_code == 403
    r = client.put(f"/api/orders/{oid}/status", headers=other, json={"status": "cancelled", "note": "hah"})
    assert r.status_code == 403
    assert client.get("/api/orders/my-orders", headers=other).json() == []

    assert [o["id"] for o in client.get("/api/orders/my-orders", headers=user_headers).json()] == [oid]
    assert client.get(f"/api/orders/{oid}", headers=admin_headers).status_code == 200
    assert client.get("/api/orders/9999", headers=user_headers).status_code == 404


def test_admin_order_listing(client, user_headers, admin_headers, make_product):
    pid = make_product(stock=10)
    ids = []
    for _ in range(2):
        _fill_cart(client, user_headers, pid, 1)
        ids.append(_checkout(client, user_headers).json()["id"])
    client.put(f"/api/admin/orders/{ids[0]}/status", headers=admin_headers, json={"status": "processing"})

    assert client.get("/api/admin/orders", headers=user_headers).status_code == 403
    everything = client.get("/api/admin/orders", headers=admin_headers).json()
    assert [o["id"] for o in everything] == [ids[1], ids[0]]
    pending = client.get("/api/admin/orders", headers=admin_headers, params={"status": "pending"}).json()
    assert [o["id"] for o in pending] == [ids[1]]
    assert client.get(f"/api/admin/orders/{ids[0]}", headers=admin_headers).json()["status"] == "processing"


def test_stock_never_negative_across_sequences(client, register, make_product, stock_of):
    pid = make_product(stock=3)
    _, h1 = register("u_one")
    _, h2 = register("u_two")
    _fill_cart(client, h1, pid, 2)
    _fill_cart(client, h2, pid, 2)

    assert _checkout(client, h1).status_code == 201
    assert _checkout(client, h2).status_code == 409
    assert stock_of(pid) == 1
