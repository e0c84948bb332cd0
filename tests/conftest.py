"""
Shared fixtures: a mongomock database swapped in for every test, a TestClient
over the app, and factories for signed-in users and catalog documents.
"""
import os

os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["APP_ENV"] = "test"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("SMTP_HOST", None)

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
import main  # noqa: E402


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    return mock_db


@pytest.fixture
def client(db):
    return TestClient(main.app)


@pytest.fixture
def make_user(client):
    """Sign up and log in a user; returns (user_id, auth headers)."""
    def _make(email="ada@example.com", password="secret", first_name="Ada", last_name="Lovelace"):
        resp = client.post("/sign-up", json={
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "password": password,
            "confirm_password": password,
        })
        assert resp.status_code == 201, resp.text
        login = client.post("/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text
        return resp.json()["user"]["id"], {"Authorization": f"Bearer {login.json()['token']}"}
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def other_user(make_user):
    return make_user(email="grace@example.com", first_name="Grace", last_name="Hopper")


@pytest.fixture
def category(client, user):
    _, headers = user
    resp = client.post("/create_category", json={"name": "Books", "description": "Paper"}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["category"]


@pytest.fixture
def make_product(client, user, category):
    _, headers = user

    def _make(name="Dune", price=12.5, quantity=10):
        resp = client.post("/create_product", json={
            "name": name,
            "description": f"{name} paperback",
            "price": price,
            "quantity": quantity,
            "category": category["id"],
            "image": "https://example.com/dune.png",
        }, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["product"]
    return _make


@pytest.fixture
def product(make_product):
    return make_product()
