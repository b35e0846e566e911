"""Shared pytest fixtures for the storefront tests."""

from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from pymongo.errors import ServerSelectionTimeoutError

from database import create_document
from notifications import NotificationService
from schemas import ProductOut


class BrokenCollection:
    """Collection whose every call fails like an unreachable server."""

    def __init__(self):
        self.calls = 0

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            self.calls += 1
            raise ServerSelectionTimeoutError("No servers available")
        return fail


class BrokenDb:
    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, BrokenCollection())


@pytest.fixture
def db():
    """Fresh in-memory MongoDB database."""
    return mongomock.MongoClient().storefront


@pytest.fixture
def broken_db():
    return BrokenDb()


@pytest.fixture
def notifier():
    return NotificationService()


@pytest.fixture
def make_product():
    """Build a catalog product without touching the database."""
    def make(id="p1", price=100.0, sale_price=None, stock=5, **kwargs):
        kwargs.setdefault("name", f"Product {id}")
        return ProductOut(id=id, price=price, sale_price=sale_price, stock=stock, **kwargs)
    return make


@pytest.fixture
def seeded(db):
    """Insert a small catalog and return the product ids by name."""
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    shop_id = create_document("shop", {"name": "Wood Works", "owner_id": "owner-1"}, database=db)
    rows = [
        {"name": "Oak Table", "price": 50.0, "stock": 3, "category_id": "furniture", "brand": "Acme",
         "rating": 4.5, "views": 10, "shop_id": shop_id, "created_at": base},
        {"name": "Pine Chair", "price": 20.0, "sale_price": 10.0, "stock": 2, "category_id": "furniture",
         "brand": "Birch", "rating": 3.0, "views": 40, "shop_id": shop_id, "created_at": base + timedelta(days=2)},
        {"name": "Teak Shelf", "price": 30.0, "stock": 0, "category_id": "storage", "brand": "Acme",
         "rating": 5.0, "views": 25, "created_at": base + timedelta(days=1)},
    ]
    ids = {row["name"]: create_document("product", row, database=db) for row in rows}
    ids["shop"] = shop_id
    return ids
