import os

os.environ.setdefault("SWEEP_ENABLED", "false")

import mongomock
import pytest
from fastapi.testclient import TestClient

import database


@pytest.fixture
def mongo_db(monkeypatch):
    """In-memory MongoDB swapped in for the module level handle"""
    client = mongomock.MongoClient()
    test_db = client["events_rental_test"]
    monkeypatch.setattr(database, "db", test_db)
    yield test_db
    client.close()


@pytest.fixture
def client(mongo_db):
    from main import app

    # Not used as a context manager, so the lifespan (real connection, sweep) never runs
    return TestClient(app)


@pytest.fixture
def make_customer(mongo_db):
    def _make(status="quotation", created_at=None, email="naledi@khumalo-events.co.za"):
        now = database.utcnow()
        result = mongo_db["customer"].insert_one({
            "name": "Naledi Khumalo",
            "email": email,
            "phone": "+27 82 555 0101",
            "status": status,
            "created_at": created_at or now,
            "updated_at": created_at or now,
        })
        return mongo_db["customer"].find_one({"_id": result.inserted_id})

    return _make


@pytest.fixture
def make_quote(mongo_db):
    def _make(customer_id, status="pending", total=8500.0):
        now = database.utcnow()
        result = mongo_db["quote"].insert_one({
            "customer_id": str(customer_id),
            "event_type": "wedding",
            "items": [{"name": "Starter Package", "quantity": 1, "unit_price": total}],
            "total": total,
            "status": status,
            "created_at": now,
            "updated_at": now,
        })
        return mongo_db["quote"].find_one({"_id": result.inserted_id})

    return _make
