def _ids(resp):
    return [p["id"] for p in resp.json()]


def test_admin_creates_category_and_product(client, admin_headers, user_headers):
    r = client.post("/api/categories", headers=admin_headers,
                    json={"name": "Birthday Cakes", "description": "For parties"})
    assert r.status_code == 201
    cat_id = r.json()["id"]

    payload = {"name": "Chocolate Cake", "price": 350000, "stock": 4, "category_id": cat_id,
               "image_url": "https://cdn.example.com/choco.jpg"}
    assert client.post("/api/products", json=payload).status_code == 401
    assert client.post("/api/products", headers=user_headers, json=payload).status_code == 403

    r = client.post("/api/products", headers=admin_headers, json=payload)
    assert r.status_code == 201
    body = r.json()
    assert body["category_name"] == "Birthday Cakes"
    assert body["record_status"] == "active"

    r = client.get(f"/api/categories/{cat_id}")
    assert r.json()["product_count"] == 1


def test_product_validation(client, admin_headers):
    assert client.post("/api/products", headers=admin_headers,
                       json={"name": "Free", "price": 0, "stock": 1}).status_code == 422
    assert client.post("/api/products", headers=admin_headers,
                       json={"name": "Neg", "price": 10, "stock": -1}).status_code == 422
    assert client.post("/api/products", headers=admin_headers,
                       json={"name": "Orphan", "price": 10, "category_id": 999}).status_code == 400


def test_category_name_rules(client, admin_headers):
    assert client.post("/api/categories", headers=admin_headers, json={"name": "ab"}).status_code == 422
    assert client.post("/api/categories", headers=admin_headers, json={"name": "Cakes!"}).status_code == 422
    assert client.post("/api/categories", headers=admin_headers,
                       json={"name": "Cakes", "description": "x" * 256}).status_code == 422


def test_list_filters_and_sort(client, make_category, make_product):
    cakes = make_category("Cakes")
    bread = make_category("Bread")
    a = make_product("Cheesecake", price=300, category_id=cakes)
    b = make_product("Baguette", price=40, category_id=bread)
    c = make_product("Carrot Cake", price=200, category_id=cakes)

    assert _ids(client.get("/api/products")) == [c, b, a]
    assert _ids(client.get("/api/products", params={"sort": "price_asc"})) == [b, c, a]
    assert _ids(client.get("/api/products", params={"category": cakes, "sort": "oldest"})) == [a, c]
    assert _ids(client.get("/api/products", params={"search": "cake", "sort": "name"})) == [c, a]
    assert _ids(client.get("/api/products", params={"skip": 1, "limit": 1})) == [b]
    assert _ids(client.get("/api/products/search", params={"query": "bag"})) == [b]
    assert client.get("/api/products", params={"sort": "random"}).status_code == 400


def test_soft_delete_restore_and_purge_product(client, admin_headers, user_headers, make_product):
    pid = make_product("Macaron")

    assert client.delete(f"/api/products/{pid}", headers=admin_headers).status_code == 200
    assert pid not in _ids(client.get("/api/products"))
    assert client.get(f"/api/products/{pid}").status_code == 404
    assert client.delete(f"/api/products/{pid}", headers=admin_headers).status_code == 404

    # includeDeleted is only honoured for admins
    assert pid not in _ids(client.get("/api/products", params={"includeDeleted": "true"}))
    assert pid not in _ids(client.get("/api/products", params={"includeDeleted": "true"},
                                      headers=user_headers))
    listed = client.get("/api/products", params={"includeDeleted": "true"}, headers=admin_headers)
    assert pid in _ids(listed)
    assert client.get(f"/api/products/{pid}", headers=admin_headers).json()["is_deleted"] is True

    r = client.put(f"/api/products/{pid}/restore", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["record_status"] == "active"
    assert pid in _ids(client.get("/api/products"))

    assert client.delete(f"/api/products/{pid}/permanent", headers=admin_headers).status_code == 200
    assert client.get(f"/api/products/{pid}", headers=admin_headers).status_code == 404


def test_update_product_partial(client, admin_headers, make_product):
    pid = make_product("Eclair", price=50, stock=3)
    r = client.put(f"/api/products/{pid}", headers=admin_headers, json={"price": 55})
    assert r.status_code == 200
    assert r.json()["price"] == 55
    assert r.json()["stock"] == 3
    assert r.json()["name"] == "Eclair"


def test_category_delete_rules(client, admin_headers, make_category, make_product):
    cat = make_category("Pastry")
    pid = make_product("Danish", category_id=cat)

    assert client.delete(f"/api/categories/{cat}", headers=admin_headers).status_code == 409

    client.delete(f"/api/products/{pid}", headers=admin_headers)
    # a deleted product still blocks the purge
    assert client.delete(f"/api/categories/{cat}/permanent", headers=admin_headers).status_code == 409
    assert client.delete(f"/api/categories/{cat}", headers=admin_headers).status_code == 200

    assert cat not in _ids(client.get("/api/categories"))
    assert cat in _ids(client.get("/api/categories", params={"includeDeleted": "true"},
                                  headers=admin_headers))

    assert client.put(f"/api/categories/{cat}/restore", headers=admin_headers).status_code == 200
    client.delete(f"/api/products/{pid}/permanent", headers=admin_headers)
    assert client.delete(f"/api/categories/{cat}/permanent", headers=admin_headers).status_code == 200
    assert client.get(f"/api/categories/{cat}", headers=admin_headers).status_code == 404


def test_update_category(client, admin_headers, make_category):
    cat = make_category("Cookies")
    r = client.put(f"/api/categories/{cat}", headers=admin_headers, json={"description": "Crunchy"})
    assert r.status_code == 200
    assert r.json()["name"] == "Cookies"
    assert r.json()["description"] == "Crunchy"


def test_null_fields_leave_values_untouched(client, admin_headers, make_category, make_product):
    cat = make_category("Tarts")
    pid = make_product("Lemon Tart", price=80, stock=4, category_id=cat)

    r = client.put(f"/api/products/{pid}", headers=admin_headers,
                   json={"price": None, "name": None, "stock": 6})
    assert r.status_code == 200, r.text
    assert (r.json()["price"], r.json()["name"], r.json()["stock"]) == (80, "Lemon Tart", 6)

    # category is the one product field null clears
    r = client.put(f"/api/products/{pid}", headers=admin_headers, json={"category_id": None})
    assert r.status_code == 200
    assert r.json()["category_id"] is None

    r = client.put(f"/api/categories/{cat}", headers=admin_headers, json={"name": None})
    assert r.status_code == 200
    assert r.json()["name"] == "Tarts"
