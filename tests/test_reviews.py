import pytest


@pytest.fixture
def product(make_product):
    return make_product("Mille Crepe", price=80000, stock=10)


def _post(client, headers, product_id, **body):
    return client.post(f"/api/products/{product_id}/reviews", headers=headers, json=body)


def _summary(client, product_id):
    return client.get(f"/api/products/{product_id}/reviews").json()


def test_average_and_count(client, register, product):
    _, a = register("rev_a")
    _, b = register("rev_b")
    _, c = register("rev_c")

    assert _summary(client, product) == {"reviews": [], "averageRating": 0.0, "ratingCount": 0}

    assert _post(client, a, product, rating=4, content="Nice").status_code == 201
    assert _post(client, b, product, rating=5, content="Superb").status_code == 201
    # unrated comments do not count
    assert _post(client, c, product, content="Looks tasty").status_code == 201

    data = _summary(client, product)
    assert data["averageRating"] == 4.5
    assert data["ratingCount"] == 2
    assert [r["content"] for r in data["reviews"]] == ["Looks tasty", "Superb", "Nice"]


def test_reply_threading(client, register, product):
    _, a = register("rev_a")
    _, b = register("rev_b")
    top = _post(client, a, product, rating=5, content="Great").json()

    first = _post(client, b, product, parent_id=top["id"], content="Agreed")
    assert first.status_code == 201
    second = _post(client, a, product, parent_id=first.json()["id"], content="Thanks")
    assert second.status_code == 201
    # a reply to a reply hangs off the top-level review
    assert second.json()["parent_id"] == top["id"]

    data = _summary(client, product)
    assert len(data["reviews"]) == 1
    assert [r["content"] for r in data["reviews"][0]["replies"]] == ["Agreed", "Thanks"]
    assert data["reviews"][0]["replies"][0]["user"]["username"] == "rev_b"
    assert data["ratingCount"] == 1


def test_reply_rules(client, register, product, make_product):
    _, a = register("rev_a")
    top = _post(client, a, product, rating=3, content="Ok").json()

    assert _post(client, a, product, parent_id=top["id"], rating=5, content="x").status_code == 400
    assert _post(client, a, product, parent_id=top["id"]).status_code == 400
    assert _post(client, a, product, parent_id=9999, content="lost").status_code == 404

    other = make_product("Other")
    assert _post(client, a, other, parent_id=top["id"], content="wrong product").status_code == 404


def test_top_level_rules(client, register, product):
    _, a = register("rev_a")
    assert _post(client, a, product).status_code == 400
    assert _post(client, a, product, rating=6).status_code == 422
    assert _post(client, a, product, content="<script>").status_code == 422
    assert _post(client, a, product, content="costs $5").status_code == 422
    assert _post(client, a, product, content="x" * 1001).status_code == 422

    assert _post(client, a, product, rating=4).status_code == 201
    assert _post(client, a, product, rating=2, content="Changed my mind").status_code == 400
    # comments without a rating are still allowed
    assert _post(client, a, product, content="Bought it again").status_code == 201


def test_reviews_need_auth_and_product(client, user_headers, product):
    assert _post(client, {}, product, rating=5).status_code == 401
    assert _post(client, user_headers, 9999, rating=5).status_code == 404
    assert client.get("/api/products/9999/reviews").status_code == 404


def test_edit_and_delete_recompute_average(client, register, admin_headers, product):
    _, a = register("rev_a")
    _, b = register("rev_b")
    ra = _post(client, a, product, rating=2, content="Meh").json()
    rb = _post(client, b, product, rating=4, content="Good").json()
    reply = _post(client, b, product, parent_id=ra["id"], content="Try the other one").json()
    assert _summary(client, product)["averageRating"] == 3.0

    assert client.put(f"/api/reviews/{ra['id']}", headers=b, json={"rating": 5}).status_code == 403
    r = client.put(f"/api/reviews/{ra['id']}", headers=a, json={"rating": 5})
    assert r.status_code == 200
    assert r.json()["content"] == "Meh"
    assert _summary(client, product)["averageRating"] == 4.5

    assert client.put(f"/api/reviews/{reply['id']}", headers=b, json={"rating": 3}).status_code == 400

    assert client.delete(f"/api/reviews/{rb['id']}", headers=a).status_code == 403
    assert client.delete(f"/api/reviews/{rb['id']}", headers=admin_headers).status_code == 200
    data = _summary(client, product)
    assert data["averageRating"] == 5.0
    assert data["ratingCount"] == 1

    # deleting the thread removes its replies
    assert client.delete(f"/api/reviews/{ra['id']}", headers=a).status_code == 200
    assert _summary(client, product)["reviews"] == []
    assert client.put(f"/api/reviews/{reply['id']}", headers=b, json={"content": "hi"}).status_code == 404


def test_user_reviews(client, register, make_product):
    p1 = make_product("P1")
    p2 = make_product("P2")
    _, a = register("rev_a")
    _, b = register("rev_b")
    top = _post(client, a, p1, rating=5, content="Love it").json()
    _post(client, a, p2, rating=3, content="Fine").json()
    _post(client, a, p1, parent_id=top["id"], content="Still love it")
    _post(client, b, p1, rating=1, content="Nope")

    mine = client.get("/api/user/reviews", headers=a).json()
    assert [r["content"] for r in mine] == ["Fine", "Love it"]


def test_admin_review_management(client, register, user_headers, admin_headers, product):
    _, a = register("rev_a")
    rid = _post(client, a, product, rating=1, content="Too sweet").json()["id"]

    assert client.get("/api/admin/reviews", headers=user_headers).status_code == 403
    listed = client.get("/api/admin/reviews", headers=admin_headers).json()
    assert [(r["id"], r["product_name"]) for r in listed] == [(rid, "Mille Crepe")]
    assert client.get(f"/api/admin/reviews/{rid}", headers=admin_headers).json()["rating"] == 1

    r = client.put(f"/api/admin/reviews/{rid}", headers=admin_headers, json={"content": "Too sweet for me"})
    assert r.status_code == 200
    assert r.json()["content"] == "Too sweet for me"
    assert r.json()["rating"] == 1

    assert client.delete(f"/api/admin/reviews/{rid}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/admin/reviews/{rid}", headers=admin_headers).status_code == 404
