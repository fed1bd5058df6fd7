def test_cart_requires_auth(client, make_product):
    pid = make_product()
    assert client.get("/api/cart").status_code == 401
    assert client.post("/api/cart", json={"productId": pid}).status_code == 401


def test_add_increments_existing_line(client, user_headers, make_product):
    pid = make_product("Croissant", price=100, stock=5)

    r = client.post("/api/cart", headers=user_headers, json={"productId": pid, "quantity": 2})
    assert r.status_code == 200
    r = client.post("/api/cart", headers=user_headers, json={"productId": pid})
    cart = r.json()
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3
    assert cart["items"][0]["subtotal"] == 300
    assert cart["items"][0]["product"]["name"] == "Croissant"
    assert cart["total"] == 300
    assert cart["item_count"] == 3


def test_add_cannot_exceed_stock(client, user_headers, make_product):
    pid = make_product(stock=3)
    assert client.post("/api/cart", headers=user_headers, json={"productId": pid, "quantity": 2}).status_code == 200
    r = client.post("/api/cart", headers=user_headers, json={"productId": pid, "quantity": 2})
    assert r.status_code == 400
    assert client.get("/api/cart", headers=user_headers).json()["items"][0]["quantity"] == 2


def test_add_rejects_bad_quantity_and_missing_product(client, user_headers, admin_headers, make_product):
    pid = make_product()
    assert client.post("/api/cart", headers=user_headers, json={"productId": pid, "quantity": 0}).status_code == 422
    assert client.post("/api/cart", headers=user_headers, json={"productId": 9999}).status_code == 404

    client.delete(f"/api/products/{pid}", headers=admin_headers)
    assert client.post("/api/cart", headers=user_headers, json={"productId": pid}).status_code == 404


def test_update_quantity_by_product(client, user_headers, make_product):
    pid = make_product(stock=4)
    client.post("/api/cart", headers=user_headers, json={"productId": pid})

    r = client.put(f"/api/cart/{pid}", headers=user_headers, json={"quantity": 4})
    assert r.status_code == 200
    assert r.json()["items"][0]["quantity"] == 4

    assert client.put(f"/api/cart/{pid}", headers=user_headers, json={"quantity": 5}).status_code == 400
    assert client.put(f"/api/cart/{pid}", headers=user_headers, json={"quantity": 0}).status_code == 422
    assert client.put("/api/cart/9999", headers=user_headers, json={"quantity": 1}).status_code == 404


def test_remove_and_clear(client, user_headers, make_product):
    a = make_product("A")
    b = make_product("B")
    client.post("/api/cart", headers=user_headers, json={"productId": a})
    client.post("/api/cart", headers=user_headers, json={"productId": b})

    r = client.delete(f"/api/cart/{a}", headers=user_headers)
    assert [i["product_id"] for i in r.json()["items"]] == [b]

    r = client.delete("/api/cart", headers=user_headers)
    assert r.json() == {"items": [], "total": 0.0, "item_count": 0}


def test_line_routes_check_ownership(client, register, user_headers, make_product):
    pid = make_product(stock=10)
    cart = client.post("/api/cart", headers=user_headers, json={"productId": pid}).json()
    item_id = cart["items"][0]["id"]

    _, other = register("mallory")
    assert client.put(f"/api/cart/items/{item_id}", headers=other, json={"quantity": 2}).status_code == 404
    assert client.delete(f"/api/cart/items/{item_id}", headers=other).status_code == 404

    r = client.put(f"/api/cart/items/{item_id}", headers=user_headers, json={"quantity": 7})
    assert r.json()["items"][0]["quantity"] == 7
    r = client.delete(f"/api/cart/items/{item_id}", headers=user_headers)
    assert r.json()["items"] == []


def test_carts_are_per_user(client, register, user_headers, make_product):
    pid = make_product()
    client.post("/api/cart", headers=user_headers, json={"productId": pid})
    _, other = register("bob")
    assert client.get("/api/cart", headers=other).json()["items"] == []
