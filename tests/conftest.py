"""
Pytest Configuration and Shared Fixtures
==========================================

Every test runs against a fresh in-memory MongoDB (mongomock) swapped in
for database.db, with the production indexes created on it.
"""

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from documents import ContactDocument, UserDocument, ensure_indexes
from security import create_access_token


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    client = mongomock.MongoClient()
    test_db = client["portal_test"]
    monkeypatch.setattr(database, "db", test_db)
    ensure_indexes()
    return test_db


@pytest.fixture
def client():
    from main import app
    return TestClient(app)


@pytest.fixture
def make_user():
    def _make(name="Jane Doe", email="jane@example.com", password="Secret123", **extra):
        user = UserDocument(name=name, email=email, password=password, **extra)
        return user.save()
    return _make


@pytest.fixture
def make_contact():
    def _make(name="Visitor", email="visitor@example.com", message="Hello there, this is a message", **extra):
        contact = ContactDocument(name=name, email=email, message=message, **extra)
        return contact.save()
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": str(user.id), "role": user.role})
        return {"Authorization": f"Bearer {token}"}
    return _headers
