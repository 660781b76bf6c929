"""Pytest fixtures for storefront tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import ensure_indexes, get_db, utcnow
from errors import AuthenticationFailed
from identity import VerifiedIdentity, get_token_verifier
from schemas import Product
from users import find_or_create_user

IDENTITIES = {
    "customer-token": VerifiedIdentity(uid="uid-customer", phone_number="+919876543210", email="priya@example.com"),
    "other-token": VerifiedIdentity(uid="uid-other", phone_number="+919812345678", email="arjun@example.com"),
    "admin-token": VerifiedIdentity(uid="uid-admin", phone_number="+919900000000", email="admin@bakery.test"),
    "no-phone-token": VerifiedIdentity(uid="uid-no-phone", email="nophone@example.com"),
}

DELIVERY_ADDRESS = {
    "name": "Priya Sharma",
    "phone": "9876543210",
    "street": "MG Road",
    "house_number": "12B",
    "pincode": "560001",
    "city": "Bengaluru",
    "state": "Karnataka",
}


class FakeTokenVerifier:
    """Stands in for the identity provider: known tokens map to fixed identities."""

    def verify(self, id_token: str) -> VerifiedIdentity:
        try:
            return IDENTITIES[id_token]
        except KeyError:
            raise AuthenticationFailed("Invalid or expired token")


def auth_header(token: str = "customer-token") -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    """A fresh in-memory database with production indexes."""
    database = mongomock.MongoClient()["bakery_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def settings():
    return Settings(admin_emails=["admin@bakery.test"], order_id_prefix="KAKE")


@pytest.fixture
def client(db, settings):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_token_verifier] = lambda: FakeTokenVerifier()
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db):
    """Insert a product validated by the Product schema and return its _id."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Test Cake {counter['n']}",
            "description": "A test cake",
            "category": "cakes",
            "price": 500,
            "weight": "1kg",
            "availability": {"in_stock": True, "quantity": 10},
        }
        data.update(overrides)
        doc = Product(**data).model_dump()
        doc["created_at"] = utcnow()
        doc["updated_at"] = doc["created_at"]
        return db["product"].insert_one(doc).inserted_id

    return _make


@pytest.fixture
def customer(db):
    user, _ = find_or_create_user(db, IDENTITIES["customer-token"])
    return user


@pytest.fixture
def other_customer(db):
    user, _ = find_or_create_user(db, IDENTITIES["other-token"])
    return user
