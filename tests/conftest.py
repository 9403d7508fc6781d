import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from storefront import database
from storefront.main import app
from storefront.schemas import Product


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def mock_db(monkeypatch):
    """Point the storefront at a fresh in-memory Mongo database."""
    db = AsyncMongoMockClient()["storefront_test"]
    monkeypatch.setattr(database, "_db", db)
    return db


@pytest.fixture
def client(mock_db):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def tee():
    return Product(id="p1", name="Classic Tee", price=500, category="T-Shirts",
                   sizes=["M", "L"], colors=["Black", "White"], stock=10)


@pytest.fixture
def jacket():
    return Product(id="p2", name="Leather Jacket", price=1299, category="Jackets",
                   sizes=["L"], colors=["Brown"], stock=3)
