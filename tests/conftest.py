import itertools
import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ENVIRONMENT", "test")

import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
import main
from auth import hash_password, token_for_user
from database import create_document, ensure_indexes, get_db
from schemas import User

ADDRESS = {
    "name": "Jane Doe",
    "address": "1 Main Street",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "USA",
    "phone": "555-0100",
}

_counter = itertools.count(1)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def order_body(*lines, **extra):
    """lines are (laptop, quantity) pairs."""
    body = {
        "order_items": [{"laptop_id": l["id"], "quantity": q, "price": l["price"]} for l, q in lines],
        "shipping_address": ADDRESS,
        "payment_method": "credit_card",
        "tax": 0,
        "shipping_cost": 0,
    }
    body.update(extra)
    return body


@pytest.fixture
def db():
    database = mongomock.MongoClient()["techhaven_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(role="user", name=None, password="secret1"):
        n = next(_counter)
        user = User(
            name=name or f"User {n}",
            email=f"user{n}@example.com",
            password_hash=hash_password(password),
            role=role,
        )
        user_id = create_document(db, "user", user)
        out = {"id": user_id, "name": user.name, "email": user.email, "role": role}
        out["token"] = token_for_user(out)
        return out
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", name="Admin")


@pytest.fixture
def make_laptop(db):
    def _make(**overrides):
        n = next(_counter)
        data = {
            "name": f"Laptop {n}",
            "brand": "Dell",
            "type": "Ultrabook",
            "processor": "Intel Core i7",
            "description": "Thin and light",
            "price": 1000.0,
            "stock": 5,
            "images": [f"/uploads/laptops/{n}.jpg"],
            "features": ["Backlit keyboard"],
        }
        data.update(overrides)
        return catalog.create_laptop(db, data)
    return _make
