import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["VNP_TMN_CODE"] = "TESTSHOP"
os.environ["VNP_HASH_SECRET"] = "TESTHASHSECRET"
os.environ["FRONTEND_URL"] = "http://shop.test"
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient

from bakery import mail
from bakery.database import Base, SessionLocal, engine
from bakery.main import app
from bakery.models import Category, Product, Role, User


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = []
    monkeypatch.setattr(mail, "send_mail", lambda to, subject, body: sent.append(
        {"to": to, "subject": subject, "body": body}
    ))
    return sent


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    s = SessionLocal()
    yield s
    s.close()


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register_user(client, username, email=None, password="secret123"):
    r = client.post("/api/auth/register", json={
        "username": username,
        "email": email or f"{username}@example.com",
        "password": password,
        "full_name": "Nguyen Van An",
        "address": "12 Hang Bong, Ha Noi",
        "phone": "0912345678",
    })
    assert r.status_code == 201, r.text
    return r.json()


def promote(user_id: int) -> None:
    s = SessionLocal()
    try:
        s.get(User, user_id).role = Role.ADMIN.value
        s.commit()
    finally:
        s.close()


@pytest.fixture
def register(client):
    def _register(username, email=None, password="secret123"):
        data = register_user(client, username, email, password)
        return data["user"], auth(data["access_token"])
    return _register


@pytest.fixture
def user_headers(register):
    return register("alice")[1]


@pytest.fixture
def admin_headers(register):
    user, headers = register("boss")
    promote(user["id"])
    return headers


@pytest.fixture
def make_category():
    def _make(name="Cakes"):
        s = SessionLocal()
        try:
            cat = Category(name=name)
            s.add(cat)
            s.commit()
            return cat.id
        finally:
            s.close()
    return _make


@pytest.fixture
def make_product():
    def _make(name="Croissant", price=100.0, stock=5, category_id=None):
        s = SessionLocal()
        try:
            pr = Product(name=name, price=price, stock=stock, category_id=category_id)
            s.add(pr)
            s.commit()
            return pr.id
        finally:
            s.close()
    return _make


@pytest.fixture
def stock_of():
    def _stock(product_id):
        s = SessionLocal()
        try:
            return s.get(Product, product_id).stock
        finally:
            s.close()
    return _stock
